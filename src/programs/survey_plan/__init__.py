"""
`programs.survey_plan`

Turns survey-plan responses from the planner and fast backends into one canonical
`SurveyStructure`, and drives the approve/reject workflow that persists it.
"""

from programs.survey_plan.approval import PlanSession, PlanWorkflowState, SurveyPlanWorkflow
from programs.survey_plan.normalizer import Invalid, normalize

__all__ = ["Invalid", "PlanSession", "PlanWorkflowState", "SurveyPlanWorkflow", "normalize"]
