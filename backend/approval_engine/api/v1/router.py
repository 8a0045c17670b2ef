from fastapi import APIRouter

from approval_engine.api.v1 import approvals, workflows

api_router = APIRouter()

api_router.include_router(approvals.router, prefix="/approvals", tags=["approvals"])
api_router.include_router(workflows.router, prefix="/workflows", tags=["workflows"])
