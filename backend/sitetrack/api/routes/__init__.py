from fastapi import APIRouter

from sitetrack.api.routes import clients, health, sites, supervisors

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(sites.router, prefix="/sites", tags=["sites"])
api_router.include_router(clients.router, prefix="/clients", tags=["clients"])
api_router.include_router(supervisors.router, prefix="/supervisors", tags=["supervisors"])
