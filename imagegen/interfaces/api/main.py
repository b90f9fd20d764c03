# imagegen/interfaces/api/main.py
"""FastAPI application exposing the generation core.

This is the UI-facing collaborator: it calls into ImageStudio and renders
results as JSON or image bytes. It also serves the model catalog
aggregator at /api/models.
"""

import logging
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Load environment variables from .env file
load_dotenv()

from imagegen.config import settings  # noqa: E402
from imagegen.core.errors import TransportError, ValidationError  # noqa: E402
from imagegen.core.studio import ImageStudio  # noqa: E402
from imagegen.interfaces.api.schemas import (  # noqa: E402
    CacheStatsResponse,
    CatalogResponse,
    ErrorResponse,
    GeneratedImageResponse,
    GenerateRequest,
)
from imagegen.interfaces.api.security import (  # noqa: E402
    ApiKey,
    get_generate_rate_limit_string,
    get_rate_limit_string,
    limiter,
)
from imagegen.utils.logging import (  # noqa: E402
    configure_structured_logging,
    request_id_var,
)
from imagegen.utils.observability import setup_logfire  # noqa: E402

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "86400",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the studio on startup and release everything on shutdown."""
    configure_structured_logging(settings.log_level)
    setup_logfire()

    studio = ImageStudio.from_settings(settings)
    app.state.studio = studio
    await studio.start()
    logger.info("Image studio ready (upstream: %s)", settings.image_api_base_url)

    yield

    await studio.close()
    logger.info("Shutting down...")


app = FastAPI(
    title="Image Generation API",
    description="Cached, resilient access to a remote image generation service",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def correlation_id(request: Request, call_next: Any) -> Response:
    """Tag every log line of a request with its X-Request-ID."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    body = ErrorResponse(error=exc.message, field=exc.field)
    return JSONResponse(status_code=422, content=body.model_dump())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies get the same shape as domain validation errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = first.get("loc") or ()
    field = str(loc[-1]) if len(loc) > 1 else None
    body = ErrorResponse(error=first.get("msg", "Invalid request"), field=field)
    return JSONResponse(status_code=422, content=body.model_dump())


@app.exception_handler(TransportError)
async def transport_error_handler(request: Request, exc: TransportError) -> JSONResponse:
    body = ErrorResponse(error=exc.message, status=exc.status)
    return JSONResponse(status_code=502, content=body.model_dump())


def get_studio(request: Request) -> ImageStudio:
    studio = getattr(request.app.state, "studio", None)
    if studio is None:
        raise HTTPException(status_code=503, detail="Image studio not initialized")
    return studio


@app.get("/health")
@limiter.limit(get_rate_limit_string)
async def health_check(request: Request) -> dict[str, Any]:
    studio = getattr(request.app.state, "studio", None)
    return {
        "status": "healthy",
        "studio_ready": studio is not None,
    }


@app.get("/api/models")
@limiter.limit(get_rate_limit_string)
async def aggregated_models(request: Request) -> JSONResponse:
    """Upstream catalog with the one-hour aggregator cache.

    Upstream failures still answer 200 with the fallback list so clients
    never break; the failure is flagged in the body and headers.
    """
    studio = get_studio(request)
    payload = await studio.aggregator.get_models()

    headers: dict[str, str] = {}
    if payload.fallback:
        headers["X-Fallback-Used"] = "true"
        headers["X-Error-Message"] = payload.error or "Unknown error"
    return JSONResponse(status_code=200, content=payload.to_dict(), headers=headers)


@app.options("/api/models")
async def aggregated_models_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@app.get("/models", response_model=CatalogResponse)
@limiter.limit(get_rate_limit_string)
async def list_models(request: Request) -> CatalogResponse:
    """Resolved catalog (consumer cache, retries, fallback)."""
    result = await get_studio(request).catalog.fetch()
    return CatalogResponse.from_result(result)


@app.post("/models/refetch", response_model=CatalogResponse)
@limiter.limit(get_rate_limit_string)
async def refetch_models(request: Request, _api_key: ApiKey) -> CatalogResponse:
    result = await get_studio(request).catalog.refetch()
    return CatalogResponse.from_result(result)


@app.post(
    "/generate",
    response_model=GeneratedImageResponse,
    responses={422: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
@limiter.limit(get_generate_rate_limit_string)
async def generate_image(
    request: Request, body: GenerateRequest, _api_key: ApiKey
) -> GeneratedImageResponse:
    """Generate an image, record it in history and display it.

    Raises:
        ValidationError: Rendered as 422.
        TransportError: Rendered as 502.
    """
    studio = get_studio(request)
    image = await studio.generate_and_present(body.to_params())
    return GeneratedImageResponse.from_image(image)


@app.get("/images/current")
@limiter.limit(get_rate_limit_string)
async def current_image(request: Request) -> Response:
    current = get_studio(request).resources.current
    if current is None:
        raise HTTPException(status_code=404, detail="No image displayed")
    handle = current.resource_handle
    return Response(content=handle.data, media_type=handle.mime_type)


@app.get("/images/{handle_id}")
@limiter.limit(get_rate_limit_string)
async def image_bytes(request: Request, handle_id: str) -> Response:
    handle = get_studio(request).resources.get_handle(handle_id)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"Image {handle_id} not found")
    return Response(content=handle.data, media_type=handle.mime_type)


@app.get("/history", response_model=list[GeneratedImageResponse])
@limiter.limit(get_rate_limit_string)
async def history(request: Request) -> list[GeneratedImageResponse]:
    """History entries, newest first."""
    entries = get_studio(request).resources.history()
    return [GeneratedImageResponse.from_image(image) for image in entries]


@app.post("/history/{index}/display", response_model=GeneratedImageResponse)
@limiter.limit(get_rate_limit_string)
async def display_history_entry(
    request: Request, index: int, _api_key: ApiKey
) -> GeneratedImageResponse:
    try:
        image = get_studio(request).resources.load_from_history(index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return GeneratedImageResponse.from_image(image)


@app.get("/cache/stats", response_model=CacheStatsResponse)
@limiter.limit(get_rate_limit_string)
async def cache_stats(request: Request) -> CacheStatsResponse:
    return CacheStatsResponse(**get_studio(request).cache.stats())


@app.delete("/cache", response_model=CacheStatsResponse)
@limiter.limit(get_rate_limit_string)
async def clear_cache(request: Request, _api_key: ApiKey) -> CacheStatsResponse:
    cache = get_studio(request).cache
    cache.clear()
    logger.info("Cache cleared via API")
    return CacheStatsResponse(**cache.stats())
