"""
Discharge orchestration endpoint.

POST /api/discharge/orchestrate runs the requested pipeline steps for the
authenticated user and returns per-step results. Step failures are part of
a 200 response; only a malformed request is rejected.
"""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.auth import get_current_user
from ..core.database import get_db
from ..models import User
from ..schemas.common import ErrorResponse
from ..schemas.discharge import OrchestrationRequest, OrchestrationResult
from ..services.discharge_orchestrator import DischargeOrchestrator


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/discharge", tags=["Discharge"])


@router.post(
    "/orchestrate",
    response_model=OrchestrationResult,
    summary="Run the discharge pipeline",
    responses={
        400: {"description": "Invalid orchestration request", "model": ErrorResponse},
        401: {"description": "Missing or invalid bearer token"},
    },
)
async def orchestrate_discharge(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        body = json.loads(await request.body())
        orchestration = OrchestrationRequest.model_validate(body)
    except json.JSONDecodeError:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid JSON body"},
        )
    except ValidationError as e:
        logger.warning(f"Invalid orchestration request from user {user.id}: {e.error_count()} errors")
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Invalid request",
                "details": json.loads(e.json(include_url=False)),
            },
        )

    orchestrator = DischargeOrchestrator(db, user)
    result = await orchestrator.orchestrate(orchestration)

    logger.info(
        f"Discharge orchestration for user {user.id}: success={result['success']} "
        f"completed={result['data']['completedSteps']} failed={result['data']['failedSteps']}"
    )
    return result
