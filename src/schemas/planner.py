from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schemas.survey import ApprovalStatus, CollectionMode, SurveyLanguage


class QuestionSpec(BaseModel):
    """A question before rendering: `intent` is the semantic text, `options_hint` the candidate options."""

    model_config = ConfigDict(extra="allow")

    spec_id: str = ""
    question_type: str = ""
    language: str = ""
    intent: str = ""
    required: Optional[bool] = None
    options_hint: List[str] = Field(default_factory=list)

    @field_validator("options_hint", mode="before")
    @classmethod
    def _none_hint_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class PlanPage(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    question_specs: List[QuestionSpec] = Field(default_factory=list)


class Plan(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str = ""
    type: str = ""
    language: str = ""
    pages: List[PlanPage] = Field(default_factory=list)
    conflict_resolution: Optional[str] = None
    estimated_question_count: Optional[int] = None
    version: Optional[int] = None
    created_at: Optional[str] = None
    notes: Optional[str] = None
    plan_rationale: Optional[str] = None
    user_requested_number_of_questions: Optional[int] = None
    user_requested_number_of_pages: Optional[int] = None
    suggested_number_of_questions: Optional[int] = None
    suggested_number_of_pages: Optional[int] = None
    final_number_of_questions: Optional[int] = None
    final_number_of_pages: Optional[int] = None
    limits: Optional[Dict[str, Any]] = None
    distribution: Optional[Dict[str, Any]] = None


class PlanThread(BaseModel):
    """Server-owned plan resource, addressed by an opaque `thread_id`."""

    model_config = ConfigDict(extra="ignore")

    thread_id: str
    plan: Plan
    approval_status: ApprovalStatus
    attempt: int = Field(ge=0)
    version: int
    generated_questions: Optional[Any] = None


class CreatePlanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(min_length=10)
    title: str
    type: str
    language: str
    num_questions: Optional[int] = Field(default=None, ge=1, le=20, alias="numQuestions")
    num_pages: Optional[int] = Field(default=None, ge=1, le=5, alias="numPages")


class CreatePlanResult(BaseModel):
    thread_id: str
    message: Optional[str] = None


class ValidationSummary(BaseModel):
    model_config = ConfigDict(extra="allow")

    passed: bool
    issue_count: int
    issues: Optional[List[Any]] = None


class GenerateValidateFixResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    thread_id: str
    rendered_pages: List[Dict[str, Any]]
    validation: Optional[ValidationSummary] = None
    saved: Optional[bool] = None
    error: Optional[str] = None

    def rendered_question_count(self) -> int:
        return sum(len(p.get("questions") or []) for p in self.rendered_pages if isinstance(p, dict))


class GenerateSurveyRequest(BaseModel):
    """Request body for the fast external backend."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(min_length=10)
    num_questions: int = Field(default=5, ge=1, le=20, alias="numQuestions")
    num_pages: int = Field(default=1, ge=1, le=5, alias="numPages")
    language: SurveyLanguage = "English"
    title: Optional[str] = None
    type: Optional[str] = None


PlanMode = Literal["planner", "fast"]


class WizardGenerateRequest(BaseModel):
    """
    Step 2 of the wizard: everything needed to request a plan for one survey.

    `surveyId` is optional; without it a survey record is created first (or a temporary id
    is used when the store is unreachable).
    """

    model_config = ConfigDict(populate_by_name=True)

    survey_id: Optional[int] = Field(default=None, alias="surveyId")
    name: str = "Untitled Survey"
    language: SurveyLanguage = "English"
    collection_mode: CollectionMode = Field(default="web", alias="collectionMode")
    type: str = Field(default="general", min_length=1)
    prompt: str = Field(min_length=10)
    num_questions: int = Field(default=5, ge=1, le=20, alias="numQuestions")
    num_pages: int = Field(default=1, ge=1, le=5, alias="numPages")
    mode: PlanMode = "planner"
    review_plan: bool = Field(default=True, alias="reviewPlan")

    @field_validator("prompt", mode="before")
    @classmethod
    def _strip_prompt(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    def create_plan_request(self) -> CreatePlanRequest:
        return CreatePlanRequest(
            prompt=self.prompt,
            title=self.name,
            type=self.type,
            language=self.language,
            num_questions=self.num_questions,
            num_pages=self.num_pages,
        )

    def fast_request(self) -> GenerateSurveyRequest:
        return GenerateSurveyRequest(
            prompt=self.prompt,
            num_questions=self.num_questions,
            num_pages=self.num_pages,
            language=self.language,
            title=self.name,
            type=self.type,
        )


__all__ = [
    "CreatePlanRequest",
    "CreatePlanResult",
    "GenerateSurveyRequest",
    "GenerateValidateFixResult",
    "Plan",
    "PlanMode",
    "PlanPage",
    "PlanThread",
    "QuestionSpec",
    "ValidationSummary",
    "WizardGenerateRequest",
]
