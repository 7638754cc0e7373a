"""API v1 router aggregation"""
from fastapi import APIRouter

from loyalty_dao.api.v1 import organizations, proposals, change_requests

api_router = APIRouter()

# Organization endpoints, plus the sub-routers scoped to one DAO ({dao_id} in their paths)
api_router.include_router(organizations.router, prefix="/daos", tags=["DAOs"])
api_router.include_router(proposals.dao_router, prefix="/daos/{dao_id}/proposals", tags=["Proposals"])
api_router.include_router(
    change_requests.dao_router, prefix="/daos/{dao_id}/change-requests", tags=["Change Requests"]
)

# Top-level routers addressed by entity id
api_router.include_router(proposals.router, prefix="/proposals", tags=["Proposals"])
api_router.include_router(change_requests.router, prefix="/change-requests", tags=["Change Requests"])
