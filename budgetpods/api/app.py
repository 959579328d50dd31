"""
FastAPI application.

Routes forward the raw request to the handlers; every method is routed so
that the handlers, not the framework, answer a wrong method with the
standard error body.
"""

from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from budgetpods import __version__
from budgetpods.api.handlers import HandlerResult, handle_apply, handle_propose
from budgetpods.orchestrator import AppComponents, create_app_components


ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def _to_response(result: HandlerResult) -> JSONResponse:
    return JSONResponse(status_code=result.status, content=result.json)


def create_router(components: AppComponents) -> APIRouter:
    router = APIRouter()

    @router.api_route("/api/chat/message", methods=ALL_METHODS)
    async def chat_message(request: Request):
        result = await handle_propose(
            components, request.method, request.headers, await request.body()
        )
        return _to_response(result)

    @router.api_route("/api/actions/apply", methods=ALL_METHODS)
    async def actions_apply(request: Request):
        result = await handle_apply(
            components, request.method, request.headers, await request.body()
        )
        return _to_response(result)

    @router.get("/health")
    async def health():
        return {"status": "ok"}

    return router


def create_app(components: Optional[AppComponents] = None) -> FastAPI:
    """Build the app around the given components, or freshly wired ones."""
    components = components or create_app_components()

    app = FastAPI(title="Pod Budget Assistant", version=__version__)
    app.state.components = components
    app.include_router(create_router(components))
    return app
