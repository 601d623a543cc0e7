from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
import logging
from typing import Optional
from pydantic import BaseModel, Field
import re
import traceback
import uuid

# Import our modules
from config import APIConfig, config
from acquisition import ImageFetcher, from_upload
from errors import RateLimitExceededError, ServiceError
from model_manager import ModelManager, resolve_target
from pipeline import ImageSource, TryOnPipeline, TryOnRequest
from rate_limiter import RateLimiter, get_client_id
from relay import OutputFormat

# Logging setup
logging.basicConfig(level=config.log_level.upper(), format=config.log_format)
logger = logging.getLogger(__name__)

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


# Pydantic models
class Base64TryOnRequest(BaseModel):
    category: Optional[str] = Field(None, alias="type")
    human_image_base64: Optional[str] = Field(None, alias="humanImageBase64")
    garment_image_base64: Optional[str] = Field(None, alias="garmentImageBase64")
    garment_description: Optional[str] = Field(None, alias="garmentDescription")


class UrlTryOnRequest(BaseModel):
    category: Optional[str] = Field(None, alias="type")
    human_image_url: Optional[str] = Field(None, alias="humanImageURL")
    garment_image_url: Optional[str] = Field(None, alias="garmentImageURL")
    garment_description: Optional[str] = Field(None, alias="garmentDescription")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id used in logs and scratch file names."""

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get("x-request-id", "")
        request.state.request_id = incoming if _REQUEST_ID_RE.match(incoming) else uuid.uuid4().hex[:12]
        resp = await call_next(request)
        resp.headers["X-Request-Id"] = request.state.request_id
        return resp


# Dependencies
def get_pipeline(request: Request) -> TryOnPipeline:
    return request.app.state.pipeline


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or uuid.uuid4().hex[:12]


async def enforce_rate_limit(request: Request):
    app_config: APIConfig = request.app.state.config
    await request.app.state.rate_limiter.hit(get_client_id(request, app_config.trust_forwarded))


async def _read_upload(request: Request, upload: Optional[UploadFile]):
    if upload is None or not upload.filename:
        return None
    app_config: APIConfig = request.app.state.config
    return await from_upload(upload, app_config.max_upload_bytes, app_config.allowed_content_types)


def create_app(
    app_config: APIConfig = config,
    models: Optional[ModelManager] = None,
    fetcher: Optional[ImageFetcher] = None,
) -> FastAPI:
    """Build the application with one shared provider handle and HTTP client."""
    app = FastAPI(
        title=app_config.title,
        description=app_config.description,
        version=app_config.version,
    )

    owns_fetcher = fetcher is None
    fetcher = fetcher or ImageFetcher(app_config.fetch_timeout, app_config.max_upload_bytes)
    models = models or ModelManager(app_config)

    app.state.config = app_config
    app.state.models = models
    app.state.fetcher = fetcher
    app.state.pipeline = TryOnPipeline(app_config, models, fetcher)
    app.state.rate_limiter = RateLimiter(app_config.rate_limit_requests, app_config.rate_limit_window)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    @app.on_event("shutdown")
    async def close_http_client():
        if owns_fetcher:
            await fetcher.aclose()

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        logger.error(f"[{get_request_id(request)}] {type(exc).__name__}: {exc.message}")
        headers = {}
        if isinstance(exc, RateLimitExceededError):
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "type": type(exc).__name__},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content={"error": f"Invalid request: {details}", "type": "RequestValidationError"},
        )

    # Custom exception handler for better error handling
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"[{get_request_id(request)}] Unhandled server error: {exc}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        return JSONResponse(
            status_code=500,
            content={"error": str(exc) or "Internal server error", "type": type(exc).__name__},
        )

    limited = [Depends(enforce_rate_limit)]

    @app.get("/")
    def api_info():
        """API information endpoint - returns JSON data."""
        return {
            "name": app_config.title,
            "version": app_config.version,
            "status": "running",
            "endpoints": [
                "/tryon",            # Multipart or URL inputs, raw model result
                "/tryon/base64",     # Base64 inputs, base64 PNG result
                "/tryon/media",      # Multipart or URL inputs, PNG body
                "/tryon/url",        # JSON URL inputs, PNG body
                "/check-wardrobe",   # Garment classification
                "/check-person",     # Person detection
                "/health",
            ],
            "categories": list(app_config.categories),
            "docs": "/docs",
        }

    @app.get("/health")
    def health_check():
        return {"status": "ok", "models": app.state.models.get_status()}

    async def _multipart_tryon(
        request: Request,
        fmt: OutputFormat,
        pipeline: TryOnPipeline,
        category: Optional[str],
        human_image: Optional[UploadFile],
        garment_image: Optional[UploadFile],
        human_image_url: Optional[str],
        garment_image_url: Optional[str],
        garment_description: Optional[str],
    ):
        request_id = get_request_id(request)
        logger.info(f"[{request_id}] Received {request.url.path} request (type={category})")
        # Reject a bad category before reading (and validating) any upload
        resolve_target(category, request.app.state.config)
        tryon_request = TryOnRequest(
            category=category,
            human=ImageSource("humanImage", upload=await _read_upload(request, human_image), url=human_image_url),
            garment=ImageSource(
                "garmentImage", upload=await _read_upload(request, garment_image), url=garment_image_url
            ),
            description=garment_description,
            request_id=request_id,
        )
        return await pipeline.run(tryon_request, fmt)

    @app.post("/tryon", dependencies=limited)
    async def tryon(
        request: Request,
        human_image: Optional[UploadFile] = File(None, alias="humanImage"),
        garment_image: Optional[UploadFile] = File(None, alias="garmentImage"),
        human_image_url: Optional[str] = Form(None, alias="humanImageURL"),
        garment_image_url: Optional[str] = Form(None, alias="garmentImageURL"),
        category: Optional[str] = Form(None, alias="type"),
        garment_description: Optional[str] = Form(None, alias="garmentDescription"),
        pipeline: TryOnPipeline = Depends(get_pipeline),
    ):
        """Try on a garment; returns the raw model result as JSON."""
        return await _multipart_tryon(
            request, OutputFormat.JSON, pipeline, category,
            human_image, garment_image, human_image_url, garment_image_url, garment_description,
        )

    @app.post("/tryon/media", dependencies=limited)
    async def tryon_media(
        request: Request,
        human_image: Optional[UploadFile] = File(None, alias="humanImage"),
        garment_image: Optional[UploadFile] = File(None, alias="garmentImage"),
        human_image_url: Optional[str] = Form(None, alias="humanImageURL"),
        garment_image_url: Optional[str] = Form(None, alias="garmentImageURL"),
        category: Optional[str] = Form(None, alias="type"),
        garment_description: Optional[str] = Form(None, alias="garmentDescription"),
        pipeline: TryOnPipeline = Depends(get_pipeline),
    ):
        """Same inputs as /tryon; responds with the composite as image/png."""
        return await _multipart_tryon(
            request, OutputFormat.MEDIA, pipeline, category,
            human_image, garment_image, human_image_url, garment_image_url, garment_description,
        )

    @app.post("/tryon/base64", dependencies=limited)
    async def tryon_base64(
        request: Request,
        body: Base64TryOnRequest,
        pipeline: TryOnPipeline = Depends(get_pipeline),
    ):
        request_id = get_request_id(request)
        logger.info(f"[{request_id}] Received /tryon/base64 request (type={body.category})")
        tryon_request = TryOnRequest(
            category=body.category,
            human=ImageSource("humanImageBase64", b64=body.human_image_base64),
            garment=ImageSource("garmentImageBase64", b64=body.garment_image_base64),
            description=body.garment_description,
            request_id=request_id,
        )
        return await pipeline.run(tryon_request, OutputFormat.BASE64)

    @app.post("/tryon/url", dependencies=limited)
    async def tryon_url(
        request: Request,
        body: UrlTryOnRequest,
        pipeline: TryOnPipeline = Depends(get_pipeline),
    ):
        request_id = get_request_id(request)
        logger.info(f"[{request_id}] Received /tryon/url request (type={body.category})")
        tryon_request = TryOnRequest(
            category=body.category,
            human=ImageSource("humanImageURL", url=body.human_image_url),
            garment=ImageSource("garmentImageURL", url=body.garment_image_url),
            description=body.garment_description,
            request_id=request_id,
        )
        return await pipeline.run(tryon_request, OutputFormat.MEDIA)

    @app.post("/check-wardrobe", dependencies=limited)
    async def check_wardrobe(
        request: Request,
        garment_image: Optional[UploadFile] = File(None, alias="garmentImage"),
        pipeline: TryOnPipeline = Depends(get_pipeline),
    ):
        """Classify the garment type of an uploaded image."""
        logger.info(f"[{get_request_id(request)}] Received /check-wardrobe request")
        result = await pipeline.check_wardrobe(await _read_upload(request, garment_image))
        return JSONResponse(result)

    @app.post("/check-person", dependencies=limited)
    async def check_person(
        request: Request,
        image: Optional[UploadFile] = File(None),
        pipeline: TryOnPipeline = Depends(get_pipeline),
    ):
        """Detect whether an uploaded image contains a person."""
        logger.info(f"[{get_request_id(request)}] Received /check-person request")
        result = await pipeline.check_person(await _read_upload(request, image))
        return JSONResponse(result)

    return app


app = create_app(config)
