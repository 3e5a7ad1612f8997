"""
API v1 router - combines all endpoint routers
"""
from fastapi import APIRouter

from signposting.api.v1.endpoints import workflows, workflow_templates, workflow_instances

# Create API v1 router
api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(workflows.router)  # Effective workflows per surgery
api_router.include_router(workflow_templates.router)  # Template editor
api_router.include_router(workflow_instances.router)  # Running workflows
