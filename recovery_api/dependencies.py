"""FastAPI dependencies for the objects built at startup.

The lifespan handler in ``recovery_api.main`` builds the verification
store, main API client and workflow once and keeps them on ``app.state``.
Tests replace them through ``app.dependency_overrides``.
"""

from fastapi import Request

from recovery_api.services.main_api import MainApiClient
from recovery_api.services.recovery import RecoveryWorkflow


def get_workflow(request: Request) -> RecoveryWorkflow:
    return request.app.state.workflow


def get_main_api_client(request: Request) -> MainApiClient:
    return request.app.state.main_api
