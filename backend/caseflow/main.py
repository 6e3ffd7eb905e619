from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from caseflow.core.config import settings
from caseflow.core.logging import setup_logging
import caseflow.models  # noqa: F401  # force model registration

from caseflow.api.errors import register_exception_handlers
from caseflow.api.v1.auth import router as auth_router
from caseflow.api.v1.organizations import router as organizations_router
from caseflow.api.v1.members import router as members_router
from caseflow.api.v1.system_admin import router as system_admin_router


def create_application() -> FastAPI:
    setup_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    app = FastAPI(title="Caseflow API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "caseflow"}

    # Routers
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(organizations_router, prefix="/api/v1")
    app.include_router(members_router, prefix="/api/v1")
    app.include_router(system_admin_router, prefix="/api/v1")

    return app


app = create_application()
