from __future__ import annotations

from typing import Any, Dict, List, Optional

from schemas.survey import QUESTION_TYPES, Survey, SurveyStructure


def builder_view(survey_id: int, survey: Optional[Survey], structure: Optional[SurveyStructure]) -> Dict[str, Any]:
    """
    Numbered, render-ready view of a structure.

    Pages are numbered from 1 and questions are numbered across pages. `type` is the widget
    after legacy alias mapping; `rawType` keeps what the generator emitted. `supported` is false
    for widgets the builder has no control for.
    """
    sections = structure.sections if structure is not None else []
    pages: List[Dict[str, Any]] = []
    number = 1
    for idx, section in enumerate(sections):
        questions: List[Dict[str, Any]] = []
        for q in section.questions:
            item: Dict[str, Any] = {
                "number": number,
                "text": q.text,
                "type": q.widget,
                "rawType": q.type,
                "options": q.options or [],
                "supported": q.widget in QUESTION_TYPES,
            }
            if q.required is not None:
                item["required"] = q.required
            if q.scale is not None:
                item["scale"] = q.scale
            questions.append(item)
            number += 1
        pages.append(
            {
                "pageNumber": idx + 1,
                "title": section.title,
                "questionCount": len(section.questions),
                "questions": questions,
            }
        )

    total = number - 1
    return {
        "surveyId": survey_id,
        "name": (survey.name if survey is not None else None) or (structure.suggested_name if structure else None),
        "hasData": bool(pages),
        "totalQuestions": total,
        "pages": pages,
    }


__all__ = ["builder_view"]
