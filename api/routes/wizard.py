from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.models import MetadataRequest, RejectRequest
from api.utils import get_workflow
from programs.survey_plan.approval import SurveyPlanWorkflow
from schemas.planner import WizardGenerateRequest

router = APIRouter(prefix="/api/wizard", tags=["wizard"])


@router.post("/metadata")
async def metadata(body: MetadataRequest, workflow: SurveyPlanWorkflow = Depends(get_workflow)) -> Dict[str, Any]:
    survey = await workflow.collect_metadata(body.to_create(), survey_id=body.survey_id, survey_type=body.type)
    return {"ok": True, "survey": survey.to_json(), "session": workflow.session(survey.id).snapshot()}


@router.post("/generate")
async def generate(body: WizardGenerateRequest, workflow: SurveyPlanWorkflow = Depends(get_workflow)) -> Dict[str, Any]:
    session = await workflow.generate(body)
    return {"ok": True, **session.snapshot()}


@router.get("/{survey_id}")
async def session_state(survey_id: int, workflow: SurveyPlanWorkflow = Depends(get_workflow)) -> Dict[str, Any]:
    return {"ok": True, **workflow.session(survey_id).snapshot()}


@router.post("/{survey_id}/approve")
async def approve(survey_id: int, workflow: SurveyPlanWorkflow = Depends(get_workflow)) -> Dict[str, Any]:
    session = await workflow.approve(survey_id)
    return {"ok": True, **session.snapshot()}


@router.post("/{survey_id}/reject")
async def reject(
    survey_id: int,
    body: RejectRequest,
    workflow: SurveyPlanWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    session = await workflow.reject(survey_id, body.feedback)
    return {"ok": True, **session.snapshot()}
