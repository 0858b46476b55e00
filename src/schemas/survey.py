from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SurveyLanguage = Literal["English", "Arabic", "Bilingual"]
CollectionMode = Literal["field", "web"]
SurveyStatus = Literal["draft", "active", "completed"]
ApprovalStatus = Literal["awaiting_approval", "approved", "rejected"]

QUESTION_TYPES = (
    "scale",
    "radio",
    "text_field",
    "text_area",
    "checkbox",
    "checkbox_list",
    "dropdown_list",
    "star_rating",
    "emoji_question",
    "rank",
    "number",
    "email",
)

# Older generators emitted a three-type vocabulary.
LEGACY_QUESTION_TYPES = {
    "rating": "star_rating",
    "text": "text_area",
    "choice": "radio",
}


def canonical_question_type(raw: str) -> str:
    t = str(raw or "").strip().lower()
    return LEGACY_QUESTION_TYPES.get(t, t)


class Question(BaseModel):
    """One renderable question in the canonical structure."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    text: str
    type: str
    options: Optional[List[str]] = None
    required: Optional[bool] = None
    spec_id: Optional[str] = None
    scale: Optional[Dict[str, Any]] = None
    validation: Optional[Dict[str, Any]] = None
    skip_logic: Optional[Dict[str, Any]] = None

    @field_validator("options", mode="before")
    @classmethod
    def _empty_options_are_absent(cls, value: Any) -> Any:
        if isinstance(value, list) and not value:
            return None
        return value

    @property
    def widget(self) -> str:
        return canonical_question_type(self.type)


class Section(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str
    questions: List[Question] = Field(default_factory=list)


class SurveyStructure(BaseModel):
    """
    Canonical survey shape consumed by the builder and persisted on the survey record.

    Every backend response is reduced to this by `programs.survey_plan.normalizer`.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sections: List[Section] = Field(default_factory=list)
    suggested_name: Optional[str] = Field(default=None, alias="suggestedName")

    def is_valid(self) -> bool:
        return any(section.questions for section in self.sections)

    def question_count(self) -> int:
        return sum(len(section.questions) for section in self.sections)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Survey(BaseModel):
    """Persisted survey record."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    language: SurveyLanguage = "English"
    collection_mode: CollectionMode = Field(default="web", alias="collectionMode")
    status: SurveyStatus = "draft"
    structure: Optional[SurveyStructure] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    def to_json(self) -> Dict[str, Any]:
        out = self.model_dump(mode="json", by_alias=True, exclude={"structure"})
        out["structure"] = self.structure.to_json() if self.structure is not None else None
        return out


class SurveyCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    language: SurveyLanguage = "English"
    collection_mode: CollectionMode = Field(default="web", alias="collectionMode")
    status: SurveyStatus = "draft"


class SurveyUpdate(BaseModel):
    """Partial update; only fields that were explicitly set are applied."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    language: Optional[SurveyLanguage] = None
    collection_mode: Optional[CollectionMode] = Field(default=None, alias="collectionMode")
    status: Optional[SurveyStatus] = None
    structure: Optional[SurveyStructure] = None

    def changes(self) -> Dict[str, Any]:
        return {k: getattr(self, k) for k in self.model_fields_set}


__all__ = [
    "ApprovalStatus",
    "CollectionMode",
    "LEGACY_QUESTION_TYPES",
    "QUESTION_TYPES",
    "Question",
    "Section",
    "Survey",
    "SurveyCreate",
    "SurveyLanguage",
    "SurveyStatus",
    "SurveyStructure",
    "SurveyUpdate",
    "canonical_question_type",
]
