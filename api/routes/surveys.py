from __future__ import annotations

from typing import Any, Dict, List

import anyio
from fastapi import APIRouter, Depends, HTTPException, Response
from starlette.status import HTTP_201_CREATED, HTTP_204_NO_CONTENT, HTTP_404_NOT_FOUND

from api.utils import get_workflow
from programs.survey_plan.approval import SurveyPlanWorkflow
from programs.survey_plan.errors import SurveyNotFound
from schemas.survey import Survey, SurveyCreate, SurveyUpdate

router = APIRouter(prefix="/api/surveys", tags=["surveys"])


@router.get("")
async def list_surveys(workflow: SurveyPlanWorkflow = Depends(get_workflow)) -> List[Dict[str, Any]]:
    surveys = await anyio.to_thread.run_sync(workflow.store.list)
    return [s.to_json() for s in surveys]


@router.post("", status_code=HTTP_201_CREATED)
async def create_survey(body: SurveyCreate, workflow: SurveyPlanWorkflow = Depends(get_workflow)) -> Dict[str, Any]:
    survey = await workflow.create_survey(body)
    return survey.to_json()


@router.get("/{survey_id}")
async def get_survey(survey_id: int, workflow: SurveyPlanWorkflow = Depends(get_workflow)) -> Dict[str, Any]:
    survey, structure = await workflow.load_structure(survey_id)
    if survey is None and structure is None:
        raise SurveyNotFound(survey_id)
    if survey is None:
        # Only the local mirror knows this survey (created while the store was down).
        survey = Survey(id=survey_id, name=(structure.suggested_name if structure else None) or "Untitled Survey")
    return survey.model_copy(update={"structure": structure}).to_json()


@router.put("/{survey_id}")
async def update_survey(
    survey_id: int,
    body: SurveyUpdate,
    workflow: SurveyPlanWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    survey = await workflow.update_survey(survey_id, body)
    return survey.to_json()


@router.delete("/{survey_id}", status_code=HTTP_204_NO_CONTENT)
async def delete_survey(survey_id: int, workflow: SurveyPlanWorkflow = Depends(get_workflow)) -> Response:
    await anyio.to_thread.run_sync(workflow.store.delete, survey_id)
    workflow.mirror.forget(survey_id)
    return Response(status_code=HTTP_204_NO_CONTENT)


@router.get("/{survey_id}/builder")
async def builder(survey_id: int, workflow: SurveyPlanWorkflow = Depends(get_workflow)) -> Dict[str, Any]:
    return await workflow.builder(survey_id)


@router.delete("/{survey_id}/sections/{index}")
async def delete_section(
    survey_id: int,
    index: int,
    workflow: SurveyPlanWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    try:
        structure = await workflow.delete_section(survey_id, index)
    except IndexError as e:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail=str(e)) from e
    return {"ok": True, "surveyId": survey_id, "structure": structure.to_json()}
