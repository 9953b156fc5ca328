import logging
import sys

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import TaskboardError
from .routers import ai as ai_router
from .routers import subtasks as subtasks_router
from .routers import todos as todos_router
from .settings import get_settings

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "todos",
        "description": "Todo items hydrated with their tags and subtasks; tag writes replace the full set.",
    },
    {"name": "subtasks", "description": "Flat CRUD for the subtasks of a todo."},
    {"name": "ai", "description": "AI-assisted parsing, rewriting, tagging and subtask suggestions."},
]

_settings = get_settings()

logger = logging.getLogger("taskboard")
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s:%(name)s: %(message)s"))
    logger.addHandler(handler)
logger.setLevel(getattr(logging, _settings.log_level, logging.INFO))

app = FastAPI(
    title="Taskboard API",
    description="Todos with tags and subtasks, authenticated by bearer token.",
    version="0.1.0",
    openapi_tags=openapi_tags,
)

# Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=not allow_all,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


# Every error leaves the service as {"message": ...}
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Return a consistent JSON structure for request validation errors.

    Response format:
        {
            "message": "Request validation failed",
            "detail": [... pydantic/fastapi error details ...]
        }
    """
    return JSONResponse(
        status_code=400,
        content={
            "message": "Request validation failed",
            "detail": jsonable_errors(exc),
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(TaskboardError)
async def taskboard_exception_handler(request: Request, exc: TaskboardError) -> JSONResponse:
    logger.warning("%s %s failed: %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors with their (possibly non-serializable) ctx values stringified."""
    errors = []
    for err in exc.errors():
        item = {k: v for k, v in err.items() if k != "ctx"}
        if "ctx" in err:
            item["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        errors.append(item)
    return errors


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health.
    """
    return {"message": "Healthy", "backend": _settings.persistence_backend}


# Include routers
app.include_router(todos_router.router)
app.include_router(subtasks_router.router)
app.include_router(ai_router.router)
