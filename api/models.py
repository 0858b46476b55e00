from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schemas.survey import CollectionMode, SurveyCreate, SurveyLanguage


class MetadataRequest(BaseModel):
    """Wizard step 1. With `surveyId` the existing record is updated, otherwise one is created."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    survey_id: Optional[int] = Field(default=None, alias="surveyId")
    name: str = Field(min_length=3)
    type: Optional[str] = None
    language: SurveyLanguage = "English"
    collection_mode: CollectionMode = Field(default="web", alias="collectionMode")

    def to_create(self) -> SurveyCreate:
        return SurveyCreate(name=self.name, language=self.language, collection_mode=self.collection_mode)


class RejectRequest(BaseModel):
    feedback: str = Field(min_length=1)

    @field_validator("feedback", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value


__all__ = ["MetadataRequest", "RejectRequest"]
