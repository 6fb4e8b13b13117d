import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import API_TITLE, API_VERSION, CORS_ORIGINS, LOG_LEVEL, SEED_SAMPLE_EXAM
from .db import create_db_and_tables
from .routers import proctoring_routers, result_routers, student_routers
from .services.exam_service import SqlExamStore
from .services.session_service import SessionRegistry

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def create_app(store=None, registry_factory=SessionRegistry) -> FastAPI:
    """
    Build the API. Passing a store skips database setup (used by tests and
    by callers that manage storage themselves).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # run once when app starts. Make DB, seed the sample exam, open the session registry.
        exam_store = store
        if exam_store is None:
            await create_db_and_tables()
            exam_store = SqlExamStore()
            if SEED_SAMPLE_EXAM:
                await exam_store.seed_sample_exam()
        app.state.exam_store = exam_store
        app.state.sessions = registry_factory(exam_store)
        logger.info("%s %s ready", API_TITLE, API_VERSION)
        try:
            yield
        finally:
            await app.state.sessions.close_all()

    app = FastAPI(title=API_TITLE, version=API_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,  # which sites can call this API
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(student_routers.router, prefix="/api")
    app.include_router(proctoring_routers.router, prefix="/api")
    app.include_router(result_routers.router, prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "active_sessions": len(app.state.sessions)}

    return app


app = create_app()
