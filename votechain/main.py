# main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from votechain import config
from votechain.errors import (
    BackendUnavailable,
    CandidateNotFound,
    ElectionAlreadyClosed,
    ElectionNotFound,
    PermissionDenied,
)
from votechain.media import upload_dir
from votechain.routes.admin_routes import router as admin_router
from votechain.routes.auth_routes import router as auth_router
from votechain.routes.election_routes import poll_router
from votechain.routes.election_routes import router as election_router
from votechain.routes.vote_routes import vote_router
from votechain.storage import build_storage

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message})


def create_app(storage=None) -> FastAPI:
    """Build the API. Pass a storage to skip connecting to the configured backend (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if storage is None:
            app.state.storage = build_storage()
            await app.state.storage.connect()
        yield
        if storage is None:
            await app.state.storage.close()

    app = FastAPI(title="VoteChain - Polls and Elections API", lifespan=lifespan)
    if storage is not None:
        app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ElectionNotFound)
    async def election_not_found(request: Request, exc: ElectionNotFound):
        return _error(404, "Election not found.")

    @app.exception_handler(CandidateNotFound)
    async def candidate_not_found(request: Request, exc: CandidateNotFound):
        return _error(404, "Candidate not found.")

    @app.exception_handler(PermissionDenied)
    async def permission_denied(request: Request, exc: PermissionDenied):
        return _error(403, str(exc))

    @app.exception_handler(ElectionAlreadyClosed)
    async def already_closed(request: Request, exc: ElectionAlreadyClosed):
        return _error(409, "Election has already ended.")

    @app.exception_handler(BackendUnavailable)
    async def backend_unavailable(request: Request, exc: BackendUnavailable):
        logger.error(f"Backend unavailable on {request.method} {request.url.path}: {exc}")
        return _error(503, "Service temporarily unavailable. Please try again.")

    app.include_router(auth_router)
    app.include_router(poll_router)
    app.include_router(election_router)
    app.include_router(vote_router)
    app.include_router(admin_router)
    app.mount(config.UPLOAD_URL_PREFIX, StaticFiles(directory=str(upload_dir())), name="uploads")

    @app.get("/health", tags=["Root"])
    async def health_check(request: Request):
        return {"status": "healthy", "storage": type(request.app.state.storage).__name__}

    @app.get("/", tags=["Root"])
    def read_root():
        return {"message": "Welcome to the VoteChain API"}

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=204)

    return app


app = create_app()
