from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.assessments.router import router as assessments_router
from app.api.v1.auth.router import router as auth_router
from app.api.v1.centers.router import router as centers_router
from app.api.v1.learners.router import router as learners_router
from app.api.v1.qualifications.router import router as qualifications_router
from app.api.v1.sampling.router import router as sampling_router
from app.api.v1.users.router import router as users_router
from app.core.config import settings
from app.core.logging_config import setup_logging


def create_app() -> FastAPI:
    setup_logging(settings)
    app = FastAPI(title="Training Assessment Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth_router)
    app.include_router(centers_router)
    app.include_router(users_router)
    app.include_router(qualifications_router)
    app.include_router(learners_router)
    app.include_router(assessments_router)
    app.include_router(sampling_router)

    return app


app = create_app()
