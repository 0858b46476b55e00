"""
Reduce every known survey-plan response shape to one `SurveyStructure`.

Three backends feed the builder: the planner's full thread response, the planner's
generate-validate-fix response, and the external "fast" backend with its own envelopes.
Each decoder below recognises one shape and returns `None` otherwise; `normalize` tries
them in priority order and returns the first hit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from programs.survey_plan.errors import snippet
from schemas.survey import Question, Section, SurveyStructure

DEFAULT_QUESTION_TYPE = "text"
FLAT_SECTION_TITLE = "Survey Questions"

_OPAQUE_FIELDS = ("scale", "validation", "skip_logic")
_SECTION_ENVELOPES = ("survey_plan", "surveyPlan", "plan", "data", "result")


@dataclass(frozen=True)
class Invalid:
    """No decoder matched; `received` holds the start of the serialized input."""

    received: str


NormalizeResult = Union[SurveyStructure, Invalid]


def _first_present(item: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value is not None and value != "":
            return value
    return None


def _coerce_question(item: Any, *, text_keys: tuple[str, ...], type_keys: tuple[str, ...], option_keys: tuple[str, ...]) -> Optional[Question]:
    if not isinstance(item, dict):
        return None
    text = str(_first_present(item, *text_keys) or "").strip()
    if not text:
        return None
    qtype = str(_first_present(item, *type_keys) or DEFAULT_QUESTION_TYPE)

    fields: Dict[str, Any] = {"text": text, "type": qtype}
    options = _first_present(item, *option_keys)
    if isinstance(options, list) and options:
        fields["options"] = [str(o) for o in options]
    if isinstance(item.get("required"), bool):
        fields["required"] = item["required"]
    spec_id = item.get("spec_id")
    if spec_id:
        fields["spec_id"] = str(spec_id)
    for key in _OPAQUE_FIELDS:
        if isinstance(item.get(key), dict):
            fields[key] = item[key]
    return Question(**fields)


def _rendered_question(item: Any) -> Optional[Question]:
    return _coerce_question(
        item,
        text_keys=("question_text", "text", "intent"),
        type_keys=("question_type", "type"),
        option_keys=("options",),
    )


def _spec_question(item: Any) -> Optional[Question]:
    return _coerce_question(
        item,
        text_keys=("intent",),
        type_keys=("question_type",),
        option_keys=("options_hint",),
    )


def _sections_from_pages(
    pages: List[Any],
    *,
    question_key: str,
    to_question: Callable[[Any], Optional[Question]],
    title_keys: tuple[str, ...] = ("name", "title"),
) -> List[Section]:
    sections: List[Section] = []
    for idx, page in enumerate(pages):
        if not isinstance(page, dict):
            continue
        raw_questions = page.get(question_key)
        questions = [q for q in (to_question(item) for item in (raw_questions or [])) if q is not None]
        title = str(_first_present(page, *title_keys) or f"Page {idx + 1}")
        sections.append(Section(title=title, questions=questions))
    return sections


def _structure(sections: List[Section], suggested_name: Any = None) -> Optional[SurveyStructure]:
    structure = SurveyStructure(
        sections=sections,
        suggested_name=str(suggested_name) if suggested_name else None,
    )
    return structure if structure.is_valid() else None


def _is_dict(value: Any) -> bool:
    return isinstance(value, dict)


# --- decoders, highest priority first -------------------------------------------------


def decode_sections(raw: Any) -> Optional[SurveyStructure]:
    if not _is_dict(raw):
        return None
    sections = raw.get("sections")
    if not isinstance(sections, list) or not sections:
        return None
    built = _sections_from_pages(
        sections,
        question_key="questions",
        to_question=_rendered_question,
        title_keys=("title", "name"),
    )
    return _structure(built, raw.get("suggestedName") or raw.get("suggested_name"))


def decode_rendered_pages(raw: Any) -> Optional[SurveyStructure]:
    if not _is_dict(raw) or not isinstance(raw.get("rendered_pages"), list):
        return None
    built = _sections_from_pages(raw["rendered_pages"], question_key="questions", to_question=_rendered_question)
    return _structure(built, raw.get("suggestedName"))


def decode_generated_rendered_pages(raw: Any) -> Optional[SurveyStructure]:
    if not _is_dict(raw):
        return None
    return decode_rendered_pages(raw.get("generated_questions"))


def decode_generated_page_record(raw: Any) -> Optional[SurveyStructure]:
    if not _is_dict(raw) or not _is_dict(raw.get("generated_questions")):
        return None
    pages = list(raw["generated_questions"].values())
    if not pages or not _is_dict(pages[0]) or not isinstance(pages[0].get("questions"), list):
        return None
    built = _sections_from_pages(pages, question_key="questions", to_question=_rendered_question)
    return _structure(built)


def decode_plan_pages(raw: Any) -> Optional[SurveyStructure]:
    if not _is_dict(raw) or not _is_dict(raw.get("plan")):
        return None
    plan = raw["plan"]
    if not isinstance(plan.get("pages"), list):
        return None
    built = _sections_from_pages(plan["pages"], question_key="question_specs", to_question=_spec_question)
    return _structure(built, plan.get("title"))


def decode_section_envelope(raw: Any) -> Optional[SurveyStructure]:
    if not _is_dict(raw):
        return None
    for key in _SECTION_ENVELOPES:
        found = decode_sections(raw.get(key))
        if found is not None:
            return found
    return None


def decode_data_rendered_pages(raw: Any) -> Optional[SurveyStructure]:
    if not _is_dict(raw) or not _is_dict(raw.get("data")):
        return None
    data = raw["data"]
    return decode_rendered_pages(data) or decode_generated_rendered_pages(data)


def decode_flat_questions(raw: Any) -> Optional[SurveyStructure]:
    if not _is_dict(raw) or "sections" in raw or not isinstance(raw.get("questions"), list):
        return None
    questions = [q for q in (_rendered_question(item) for item in raw["questions"]) if q is not None]
    title = str(raw.get("title") or FLAT_SECTION_TITLE)
    return _structure([Section(title=title, questions=questions)], raw.get("suggestedName") or raw.get("name"))


DECODERS: List[Callable[[Any], Optional[SurveyStructure]]] = [
    decode_sections,
    decode_rendered_pages,
    decode_generated_rendered_pages,
    decode_generated_page_record,
    decode_plan_pages,
    decode_section_envelope,
    decode_data_rendered_pages,
    decode_flat_questions,
]


def normalize(raw: Any) -> NormalizeResult:
    for decode in DECODERS:
        structure = decode(raw)
        if structure is not None:
            return structure
    return Invalid(received=snippet(raw))


def structure_from_plan_specs(plan: Any, suggested_name: Optional[str] = None) -> Optional[SurveyStructure]:
    """Lowest-fidelity structure: intent + options_hint straight from the plan pages."""
    if hasattr(plan, "model_dump"):
        plan = plan.model_dump()
    found = decode_plan_pages({"plan": plan})
    if found is not None and suggested_name and not found.suggested_name:
        found = found.model_copy(update={"suggested_name": suggested_name})
    return found


__all__ = [
    "DECODERS",
    "Invalid",
    "NormalizeResult",
    "normalize",
    "structure_from_plan_specs",
]
