import logging
import pathlib
import re
from contextlib import asynccontextmanager, contextmanager
from typing import Iterator, List, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import crud, schemas
from .config import Settings
from .database import Database
from .exceptions import CronNotConfiguredError, CronUnauthorizedError, TodoError, TodoNotFoundError
from .logging_setup import setup_logging
from .maintenance import run_maintenance, verify_cron_secret

logger = logging.getLogger(__name__)

STATIC_DIR = pathlib.Path(__file__).parent.resolve() / "static"
_TODO_ID_RE = re.compile(r"^[+-]?[0-9]+$")
# ids are stored in a signed 64-bit column
_MAX_TODO_ID = 2**63 - 1

router = APIRouter()


def get_db(request: Request) -> Iterator[Session]:
    yield from request.app.state.db.session()


def parse_todo_id(todo_id: str) -> int:
    raw = todo_id.strip()
    if not _TODO_ID_RE.match(raw) or not -_MAX_TODO_ID - 1 <= int(raw) <= _MAX_TODO_ID:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid todo ID")
    return int(raw)


@contextmanager
def store_errors(message: str) -> Iterator[None]:
    """Turn unexpected failures into a 500 carrying `message`; the cause is only logged."""
    try:
        yield
    except (TodoError, HTTPException):
        raise
    except Exception:
        logger.exception(message)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message) from None


@router.get("/", include_in_schema=False)
def index():
    return FileResponse(STATIC_DIR / "index.html")


@router.get("/health")
def health_check():
    return {"status": "healthy"}


@router.get("/todos", response_model=List[schemas.TodoRead])
def read_todos(
    status_filter: Optional[str] = Query(default=None, alias="filter"),
    priority: Optional[str] = None,
    db: Session = Depends(get_db),
):
    with store_errors("Failed to fetch todos"):
        todos = crud.list_todos(db, status_filter=status_filter, priority=priority)
    return [schemas.TodoRead.model_validate(t) for t in todos]


@router.get("/todos/{todo_id}", response_model=schemas.TodoRead)
def read_todo(todo_id: int = Depends(parse_todo_id), db: Session = Depends(get_db)):
    with store_errors("Failed to fetch todo"):
        obj = crud.get_todo(db, todo_id)
    return schemas.TodoRead.model_validate(obj)


@router.post("/todos", response_model=schemas.TodoRead, status_code=status.HTTP_201_CREATED)
def create_todo(todo: schemas.TodoCreate, db: Session = Depends(get_db)):
    with store_errors("Failed to create todo"):
        obj = crud.create_todo(db, todo)
    return schemas.TodoRead.model_validate(obj)


@router.patch("/todos/{todo_id}", response_model=schemas.TodoRead)
def update_todo(todo: schemas.TodoUpdate, todo_id: int = Depends(parse_todo_id), db: Session = Depends(get_db)):
    with store_errors("Failed to update todo"):
        obj = crud.update_todo(db, todo_id, todo)
    return schemas.TodoRead.model_validate(obj)


@router.delete("/todos/{todo_id}")
def delete_todo(todo_id: int = Depends(parse_todo_id), db: Session = Depends(get_db)):
    with store_errors("Failed to delete todo"):
        crud.delete_todo(db, todo_id)
    return {"message": "Todo deleted successfully"}


@router.patch("/todos/{todo_id}/complete", response_model=schemas.TodoRead)
def toggle_todo(todo_id: int = Depends(parse_todo_id), db: Session = Depends(get_db)):
    with store_errors("Failed to toggle todo completion"):
        obj = crud.toggle_todo(db, todo_id)
    return schemas.TodoRead.model_validate(obj)


@router.get("/cron", response_model=schemas.CronResult)
def run_cron(
    request: Request,
    x_cron_secret: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    verify_cron_secret(request.app.state.settings.cron_secret, x_cron_secret)
    try:
        report = run_maintenance(db)
    except Exception as e:
        logger.exception("Error in cron job")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "message": str(e) or type(e).__name__},
        )
    return schemas.CronResult(
        timestamp=schemas.format_timestamp(report.timestamp),
        stats=report.stats,
        overdue_count=len(report.overdue),
    )


def _error(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    err = errors[0]
    if err.get("type") == "json_invalid":
        return "Invalid JSON body"
    msg = str(err.get("msg", "Invalid request"))
    if msg.startswith("Value error, "):
        return msg[len("Value error, "):]
    loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
    return f"{'.'.join(loc)}: {msg}" if loc else msg


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        message = _validation_message(exc)
        logger.info("Rejected request %s %s: %s", request.method, request.url.path, message)
        return _error(status.HTTP_400_BAD_REQUEST, message)

    @app.exception_handler(TodoNotFoundError)
    async def not_found(request: Request, exc: TodoNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, "Todo not found")

    @app.exception_handler(CronUnauthorizedError)
    async def cron_unauthorized(request: Request, exc: CronUnauthorizedError):
        return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    @app.exception_handler(CronNotConfiguredError)
    async def cron_not_configured(request: Request, exc: CronNotConfiguredError):
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error")


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    database = database or Database(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        yield
        database.dispose()

    app = FastAPI(title="Todo Master - FastAPI Backend", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger.info("Starting server on %s:%s", settings.host, settings.port)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
