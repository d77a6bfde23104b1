"""Content relay — FastAPI app in front of the upstream completion API.

Loads config.yaml on startup. Exposes /deepseek/chat for single-shot
generation, /deepseek/streamChat for SSE streaming, plus /user and a few
operational endpoints.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import urlsplit

import pydantic
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import UserConfig, get_config, load_config, reload_config
from app.errors import ValidationError
from app.runtime import format_sse, generate_document, stream_document
from app.schemas import ChatResponse, GenerationRequest
from app.upstream.client import UpstreamClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load config on startup."""
    config = load_config()
    logger.info(
        f"Relay started (origins={config.allowed_origins}, "
        f"upstream={urlsplit(config.upstream.base_url).netloc}, "
        f"default_model={config.upstream.default_model})"
    )
    yield
    logger.info("Relay shutting down")


# Load config early so we can read allowed_origins for CORS middleware.
_boot_config = load_config()
logging.getLogger().setLevel(_boot_config.log_level)

app = FastAPI(title="Content Relay", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_boot_config.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.info(f"Rejected {request.url.path}: {exc}")
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": str(exc), "errors": exc.errors},
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

_bearer = HTTPBearer(auto_error=False)


def get_upstream_client() -> UpstreamClient:
    return UpstreamClient(get_config().upstream)


async def parse_generation_request(request: Request) -> GenerationRequest:
    """Read a GenerationRequest from a JSON or form body.

    Raises ValidationError when the body is unreadable or a field is
    missing or malformed.
    """
    content_type = request.headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            data = await request.json()
        else:
            data = dict(await request.form())
    except ValueError as e:
        raise ValidationError("Request body is not valid JSON") from e

    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")

    try:
        return GenerationRequest.model_validate(data)
    except pydantic.ValidationError as e:
        errors: dict[str, list[str]] = {}
        for err in e.errors():
            field = ".".join(str(part) for part in err["loc"]) or "body"
            errors.setdefault(field, []).append(err["msg"])
        raise ValidationError(f"Invalid fields: {', '.join(errors)}", errors) from e


async def current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> UserConfig:
    """Resolve the bearer token to a configured user, or reject with 401."""
    user = get_config().get_user_by_token(credentials.credentials) if credentials else None
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Unauthenticated.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def _log_request_start(name: str, request: Request) -> None:
    client_ip = request.client.host if request.client else None
    logger.info(
        f"{name} request started (ip={client_ip}, "
        f"user_agent={request.headers.get('user-agent')})"
    )


# ---------------------------------------------------------------------------
# Generation endpoints
# ---------------------------------------------------------------------------


@app.post("/deepseek/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(
    request: Request,
    body: GenerationRequest = Depends(parse_generation_request),
    client: UpstreamClient = Depends(get_upstream_client),
):
    """Generate the articles in one go and return them as Markdown."""
    _log_request_start("chat", request)

    try:
        content = await generate_document(client, body)
    except Exception as e:
        logger.error(f"chat failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=ChatResponse(success=False, message=str(e)).model_dump(exclude_none=True),
        )

    return ChatResponse(success=True, data=content)


@app.post("/deepseek/streamChat")
async def stream_chat(
    request: Request,
    body: GenerationRequest = Depends(parse_generation_request),
    client: UpstreamClient = Depends(get_upstream_client),
):
    """Generate the articles and stream them as Server-Sent Events (SSE)."""
    _log_request_start("streamChat", request)

    async def stream():
        async for event in stream_document(client, body):
            yield format_sse(event)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ---------------------------------------------------------------------------
# Authenticated & operational endpoints
# ---------------------------------------------------------------------------


@app.get("/user")
async def user(current: UserConfig = Depends(current_user)):
    """Return the profile of the authenticated user."""
    return current.model_dump(exclude={"token"})


@app.get("/health")
async def health():
    """Liveness check."""
    config = get_config()
    return {
        "status": "healthy",
        "upstream": urlsplit(config.upstream.base_url).netloc,
        "default_model": config.upstream.default_model,
    }


@app.post("/reload", dependencies=[Depends(current_user)])
async def reload():
    """Hot-reload config.yaml without a process restart."""
    try:
        new_config = reload_config()
    except Exception as e:
        logger.error(f"Reload failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Reload failed: {e}")

    return {"status": "reloaded", "users": len(new_config.users)}
