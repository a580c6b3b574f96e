"""Supervisor portfolio routes."""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from sitetrack.api.routes.sites import get_mutation_service
from sitetrack.api.schemas.sites import SupervisorStatsResponse
from sitetrack.services.site_mutation_service import SiteMutationService

router = APIRouter()


@router.get("/{supervisor_id}/stats", response_model=SupervisorStatsResponse)
async def get_supervisor_stats(
    supervisor_id: str,
    service: SiteMutationService = Depends(get_mutation_service),
):
    """Site counts per status and average progress across a supervisor's sites."""
    stats = await service.get_supervisor_stats(supervisor_id)
    return SupervisorStatsResponse(supervisor_id=supervisor_id, **asdict(stats))
