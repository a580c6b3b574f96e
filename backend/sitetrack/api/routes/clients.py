"""Client-facing routes."""

from fastapi import APIRouter, Depends

from sitetrack.api.routes.sites import get_mutation_service
from sitetrack.domain.models import Site
from sitetrack.services.site_mutation_service import SiteMutationService

router = APIRouter()


@router.get("/{client_id}/site", response_model=Site)
async def get_client_site(client_id: str, service: SiteMutationService = Depends(get_mutation_service)):
    """The client's site, 404 when none is assigned yet."""
    return await service.get_client_site(client_id)
