"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
password manager's face authentication backend.

The application provides:
- REST endpoints for face registration and login
- REST endpoints for user management
- Health check endpoint

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m api.app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api.routes.users import get_service, router as users_router
from api.schemas import HealthResponse
from core.config import get_api_config, get_face_embedding_config, get_server_config
from core.errors import ErrorCode, ServiceError
from core.face_auth_service import FaceAuthService, get_face_auth_service


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_TITLE = "Password Manager Face Authentication API"
API_VERSION = "1.0.0"

STATUS_BY_CODE = {
    ErrorCode.VALIDATION_FAILED: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INTERNAL: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Resolve secrets (missing secrets abort startup)
    - Open the identity store
    - Load the face models, unless preloading is disabled

    Runs on shutdown:
    - Close the identity store
    """
    logger.info("=" * 60)
    logger.info(f"Starting {API_TITLE}")
    logger.info("=" * 60)

    service = get_face_auth_service()
    if service.settings.insecure_defaults_used:
        logger.warning(
            f"Running with insecure default secrets: {', '.join(service.settings.insecure_defaults_used)}"
        )

    stats = service.store.get_stats()
    logger.info(f"Identity store ready: {stats['total_users']} users registered")

    if get_face_embedding_config().get("preload", True):
        logger.info(f"Loading face models (backend={service.embedder.backend})...")
        await run_in_threadpool(service.embedder.load_model)
        logger.info("Face models loaded")

    logger.info("API startup complete!")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down API...")
    service.store.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=API_TITLE,
    description="""
Face-gated backend for the password manager.

## Features
- **Registration**: Create an account from an email and a selfie
- **Login**: Verify a selfie against the registered face and receive a JWT
- **User Management**: List, view, and delete users

Selfies may be sent as a plain image (`selfie`) or as a client-encrypted
envelope (`encryptedImage`): `{"data": "<AES ciphertext of base64 image>"}`.
    """,
    version=API_VERSION,
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_api_config().get("cors_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(users_router)


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Translate a ServiceError into an HTTP response."""
    status_code = STATUS_BY_CODE.get(exc.code, 500)

    if exc.is_internal:
        logger.error(f"Internal error on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=status_code, content={"error": "Internal Server Error"})

    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "details": jsonable_encoder(exc.details)},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed requests are validation failures (400), not 422."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation error",
            "details": {"issues": jsonable_encoder(exc.errors())},
        },
    )


# ============================================================
# Health Check Endpoint
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check(service: FaceAuthService = Depends(get_service)):
    """
    Check the health of the API and its dependencies.

    Returns status of:
    - Face models (loaded/not loaded)
    - Number of registered users
    """
    stats = service.store.get_stats()
    model_loaded = service.embedder.is_loaded

    return HealthResponse(
        status="healthy" if model_loaded else "degraded",
        model_loaded=model_loaded,
        backend=service.embedder.backend,
        embedding_dim=service.embedder.embedding_dim,
        enrolled_users=stats["total_users"],
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    server = get_server_config()
    logger.info(f"Starting server on {server['host']}:{server['port']}")
    uvicorn.run(
        "api.app:app",
        host=server["host"],
        port=server["port"],
        reload=True,
        log_level="info",
    )
