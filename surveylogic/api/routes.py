"""
FastAPI routes for the SurveyLogic engine.

Endpoints:
- POST /evaluate           : run a page evaluation pass
- POST /rules/validate     : authoring-time validation of a survey's rules
- POST /visibility/delta   : diff two visibility maps of the same page
- GET  /health             : health check
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, ValidationError

from surveylogic.core.answers import AnswerStore
from surveylogic.core.errors import PageNotFoundError
from surveylogic.core.resolver import compute_visibility_delta
from surveylogic.core.results import EvaluationResult, VisibilityDelta, VisibilityMap
from surveylogic.core.schema import ConditionalRule, Survey
from surveylogic.core.validation import RuleIssue, validate_rules
from surveylogic.engine.graph import arun_page_pass

logger = logging.getLogger(__name__)

router = APIRouter()

# These will be injected by the app factory
_graph = None
_validate_on_evaluate = False


def configure_routes(graph=None, validate_on_evaluate: bool = False):
    """Inject the compiled graph and evaluation options into the routes module.

    Called by the app factory during startup.
    """
    global _graph, _validate_on_evaluate
    _graph = graph
    _validate_on_evaluate = validate_on_evaluate


# --- Request / Response Models ---


class EvaluateRequest(BaseModel):
    """Request body for the /evaluate endpoint.

    Rules are taken as raw objects so one malformed rule is skipped
    instead of rejecting the whole request.
    """

    survey: Survey
    rules: list[dict[str, Any]] = Field(default_factory=list)
    answers: AnswerStore = Field(default_factory=AnswerStore)
    page_id: str
    loop_counts: dict[str, int] | None = None


class EvaluateResponse(BaseModel):
    """Response body for the /evaluate endpoint."""

    visibility: VisibilityMap
    results: list[EvaluationResult]
    skipped_rules: list[str]
    issues: list[RuleIssue] | None = None


class ValidateRulesRequest(BaseModel):
    """Request body for the /rules/validate endpoint."""

    survey: Survey
    rules: list[ConditionalRule]


class ValidateRulesResponse(BaseModel):
    """Response body for the /rules/validate endpoint."""

    valid: bool
    errors: list[RuleIssue]
    warnings: list[RuleIssue]


class DeltaRequest(BaseModel):
    """Request body for the /visibility/delta endpoint."""

    previous: VisibilityMap
    current: VisibilityMap
    answers: AnswerStore | None = None


# --- Endpoints ---


@router.post("/evaluate", response_model=EvaluateResponse)
async def evaluate(request: EvaluateRequest):
    """Run one page evaluation pass over the submitted answer snapshot."""
    try:
        outcome = await arun_page_pass(
            survey=request.survey,
            rules=request.rules,
            answers=request.answers,
            page_id=request.page_id,
            loop_counts=request.loop_counts,
            graph=_graph,
        )
    except PageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    issues = None
    if _validate_on_evaluate:
        parsed = []
        for raw in request.rules:
            try:
                parsed.append(ConditionalRule.model_validate(raw))
            except ValidationError:
                continue
        issues = validate_rules(request.survey, parsed).issues

    return EvaluateResponse(
        visibility=outcome.visibility,
        results=outcome.results,
        skipped_rules=outcome.skipped_rules,
        issues=issues,
    )


@router.post("/rules/validate", response_model=ValidateRulesResponse)
async def validate_survey_rules(request: ValidateRulesRequest):
    """Validate a survey's rules before they are stored."""
    report = validate_rules(request.survey, request.rules)
    return ValidateRulesResponse(
        valid=report.valid,
        errors=report.errors,
        warnings=report.warnings,
    )


@router.post("/visibility/delta", response_model=VisibilityDelta)
async def visibility_delta(request: DeltaRequest):
    """Diff the previous and current visibility maps of a page."""
    return compute_visibility_delta(request.previous, request.current, request.answers)


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "graph_compiled": _graph is not None,
    }
