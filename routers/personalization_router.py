"""
Personalization Router - profile read, explicit preference overrides,
on-demand analysis and weekly reports
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from backend.utils.responses import success_response, error_response
from crud.personalization import PersonalizationRepository
from crud.weekly_report import WeeklyReportRepository
from database import get_db
from database_models import User
from jobs.background_queue import background_queue
from jobs.personalization_analysis_job import analyze_user_personalization
from services.pattern_analysis import PatternAnalysisService, serialize_profile

logger = logging.getLogger(__name__)

personalization_router = APIRouter(prefix="/api/personalization", tags=["personalization"])


class OverridesRequest(BaseModel):
    communication_style: Optional[str] = None
    verbosity: Optional[str] = None


@personalization_router.get("/profile")
async def get_profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    profile = await PersonalizationRepository(db).get_by_user(user.id)
    if not profile:
        return error_response("PROFILE_NOT_FOUND", status=404, message="No personalization profile yet")
    return success_response(serialize_profile(profile))


@personalization_router.put("/overrides")
async def set_overrides(
    request: OverridesRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Pin communication style and/or verbosity; analysis will not change them."""
    try:
        profile = await PatternAnalysisService(db).set_overrides(
            user.id,
            communication_style=request.communication_style,
            verbosity=request.verbosity,
        )
    except ValueError as e:
        return error_response("INVALID_OVERRIDE", status=400, message=str(e))
    return success_response(serialize_profile(profile), message="Preferences saved")


@personalization_router.post("/analyze")
async def analyze_now(user: User = Depends(get_current_user)):
    """Queue an analysis run for the signed-in user."""
    user_id = user.id

    async def job() -> None:
        await analyze_user_personalization(user_id)

    background_queue.submit(job)
    return success_response({"queued": True}, message="Analysis queued", status=202)


@personalization_router.get("/weekly-reports")
async def list_weekly_reports(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    reports = await WeeklyReportRepository(db).list_for_user(user.id)
    return success_response([
        {
            "id": r.id,
            "content": r.content,
            "metadata": r.report_metadata,
            "created_at": r.created_at.isoformat(),
        }
        for r in reports
    ])
