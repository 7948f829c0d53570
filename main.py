"""
Main application entry point for the Notifications Configuration API.

This module initializes the FastAPI application, configures logging and
CORS, installs the handlers that render errors as JSON envelopes and
includes the versioned API router.

Modules:
- FastAPI: Web framework
- CORSMiddleware: Middleware for handling CORS
- app.database: Database engine
- app.models: SQLAlchemy models
- app.api: Versioned API router
- app.core: Application settings
- app.log: Logging configuration
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.database import engine
from app import models
from app.api import router as api_router
from app.core import get_settings
from app.log import configure_logging
from app.schemas import ErrorOut

configure_logging()
logger = logging.getLogger("app.main")

# Create tables (for development only)
models.Base.metadata.create_all(bind=engine)

settings = get_settings()

# Initialize FastAPI application
app = FastAPI(title="Notifications Configuration API")

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Location", "X-Resource-Identifier"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Render an HTTP error as ``{"status": "error", "message": ...}``.

    Headers attached to the exception, such as ``Allow`` or
    ``WWW-Authenticate``, are kept.
    """
    logger.debug(
        "Rejected %s %s: %s %s", request.method, request.url.path, exc.status_code, exc.detail
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorOut(message=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Log an unexpected error and answer with a generic 500 response.
    """
    logger.error(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=500,
        content=ErrorOut(message="An internal server error occurred").model_dump(),
    )


# Include routers for application areas
app.include_router(api_router)


@app.get("/")
def root():
    """
    Root endpoint for the API.

    Returns a simple JSON message directing users to the Swagger UI.

    Returns:
        dict: JSON message with information about the API
    """
    return {"msg": "Notifications Configuration API. Visit /docs for Swagger UI"}
