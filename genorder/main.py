from contextlib import asynccontextmanager
import sys

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from genorder.core.config import settings
from genorder.core.exceptions import BaseCustomException, ValidationFailure, create_error_response, field_errors
from genorder.api.v1.api import api_router
from genorder.infrastructure.resource_api import resource_api

logger.remove()
logger.add(sys.stderr, level=settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await resource_api.connect(
        settings.RESOURCE_API_BASE_URL,
        token=settings.RESOURCE_API_TOKEN,
        timeout=settings.RESOURCE_API_TIMEOUT_SECONDS,
    )
    yield
    await resource_api.disconnect()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.exception_handler(BaseCustomException)
async def custom_exception_handler(request: Request, exc: BaseCustomException):
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc, request.headers.get("x-request-id")),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationFailure(details={"errors": field_errors(exc.errors())})
    return JSONResponse(
        status_code=error.status_code,
        content=create_error_response(error, request.headers.get("x-request-id")),
    )


@app.get("/health")
def health_check():
    return {"status": "ok"}
