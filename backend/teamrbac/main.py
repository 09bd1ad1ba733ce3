import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from teamrbac.core.config import settings
from teamrbac.core.errors import TeamAccessError
import teamrbac.models  # noqa: F401  # force model registration

from teamrbac.api.v1.team_permissions import router as team_permissions_router
from teamrbac.api.v1.team_memberships import router as team_memberships_router
from teamrbac.api.v1.team_memberships import user_router as user_teams_router

logger = logging.getLogger(__name__)


async def team_access_error_handler(request: Request, exc: TeamAccessError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)

    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()}, headers=headers)


def create_application() -> FastAPI:
    logging.basicConfig(level=settings.LOG_LEVEL)

    app = FastAPI(title="Team RBAC API")

    app.add_exception_handler(TeamAccessError, team_access_error_handler)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "teamrbac"}

    # Routers
    app.include_router(team_permissions_router, prefix="/api/v1")
    app.include_router(team_memberships_router, prefix="/api/v1")
    app.include_router(user_teams_router, prefix="/api/v1")

    return app


app = create_application()
