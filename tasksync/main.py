import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .authority import apply_batch
from .config import Settings, get_settings
from .db import init_db, make_engine, make_session_factory
from .errors import ValidationError
from .logging_config import setup_logging
from .reconciler import AuthorityClient, OfflineResult, ReconciliationEngine
from .remote import RemoteAuthorityClient
from .repository import TaskRepository
from .schemas import (
    BatchResponse,
    IncomingBatch,
    RetryResponse,
    SyncErrorRead,
    SyncResultRead,
    SyncStatusRead,
    TaskChanges,
    TaskCreate,
    TaskSnapshot,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_repository(request: Request) -> TaskRepository:
    return request.app.state.repository


def get_reconciler(request: Request) -> ReconciliationEngine:
    return request.app.state.reconciler


def get_remote(request: Request) -> AuthorityClient:
    return request.app.state.remote


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _bad_request(request: Request, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message, "timestamp": _now_iso(), "path": request.url.path},
    )


async def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _bad_request(request, str(exc))


async def _request_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if not errors:
        return _bad_request(request, "Invalid request")
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return _bad_request(request, f"{field}: {message}" if field else message)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/api/health")
def api_health():
    return {"status": "ok", "timestamp": _now_iso()}


@router.get("/api/tasks", response_model=list[TaskSnapshot])
def list_tasks(repo: TaskRepository = Depends(get_repository)):
    return repo.list_tasks()


@router.get("/api/tasks/{task_id}", response_model=TaskSnapshot)
def get_task(task_id: str, repo: TaskRepository = Depends(get_repository)):
    task = repo.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.post("/api/tasks", response_model=TaskSnapshot, status_code=status.HTTP_201_CREATED)
def create_task(payload: TaskCreate, repo: TaskRepository = Depends(get_repository)):
    return repo.create(payload.title, payload.description)


@router.put("/api/tasks/{task_id}", response_model=TaskSnapshot)
def update_task(task_id: str, payload: TaskChanges, repo: TaskRepository = Depends(get_repository)):
    task = repo.update(task_id, payload)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.delete("/api/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(task_id: str, repo: TaskRepository = Depends(get_repository)):
    if not repo.delete(task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/sync", response_model=SyncResultRead)
def sync(engine: ReconciliationEngine = Depends(get_reconciler)):
    result = engine.reconcile()
    if isinstance(result, OfflineResult):
        raise HTTPException(status_code=503, detail="Service unavailable - offline")

    return SyncResultRead(
        success=result.success,
        synced_items=result.synced,
        failed_items=result.failed,
        errors=[SyncErrorRead.model_validate(e) for e in result.errors],
    )


@router.get("/api/status", response_model=SyncStatusRead)
def sync_status(
    repo: TaskRepository = Depends(get_repository),
    remote: AuthorityClient = Depends(get_remote),
):
    return SyncStatusRead(**repo.status(), is_online=remote.probe())


@router.post("/api/sync/retry", response_model=RetryResponse)
def retry_failed(task_id: str | None = None, repo: TaskRepository = Depends(get_repository)):
    return RetryResponse(requeued=repo.retry_failed(task_id))


@router.post("/api/batch", response_model=BatchResponse)
def batch(payload: IncomingBatch, request: Request):
    if not isinstance(payload.items, list):
        raise HTTPException(status_code=400, detail="Items array is required")

    logger.debug(
        "Received batch of %d item(s), client time %s", len(payload.items), payload.client_timestamp
    )
    with request.app.state.session_factory.begin() as session:
        outcomes = apply_batch(session, payload.items)
    return BatchResponse(processed_items=outcomes)


def create_app(settings: Settings | None = None, remote: AuthorityClient | None = None) -> FastAPI:
    settings = settings or get_settings()
    engine = make_engine(settings.database_url)
    session_factory = make_session_factory(engine)
    remote = remote or RemoteAuthorityClient(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        init_db(engine)
        logger.info("Starting tasksync API (authority=%s)", settings.api_base_url)
        yield
        logger.info("Shutting down tasksync API")
        close = getattr(remote, "close", None)
        if close is not None:
            close()
        engine.dispose()

    app = FastAPI(title="tasksync API", lifespan=lifespan)
    app.state.session_factory = session_factory
    app.state.repository = TaskRepository(session_factory)
    app.state.remote = remote
    app.state.reconciler = ReconciliationEngine(session_factory, remote, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(RequestValidationError, _request_error_handler)
    app.include_router(router)
    return app


app = create_app()
