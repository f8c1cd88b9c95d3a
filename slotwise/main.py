from dotenv import load_dotenv
load_dotenv()

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slotwise.core.config import settings
from slotwise.core.errors import SlotwiseError
from slotwise.core.logging import configure_logging, set_request_id
from slotwise.db.session import engine
from slotwise.db.base import Base
from slotwise.db import models  # noqa: F401 (ensures models are registered)
from slotwise.api.router import api_router

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


#Create application instance
app = FastAPI(title="Slotwise API")


#configure CORS for the booking frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


#Tag every log line with the request id and echo it back to the caller
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    set_request_id(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


#Domain errors carry their own status and stable code
@app.exception_handler(SlotwiseError)
async def slotwise_error_handler(request: Request, exc: SlotwiseError):
    logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


#Malformed input is a validation error like any other
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors()), "code": "validation_error"},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred"},
    )


#Create all database tables on application startup
Base.metadata.create_all(bind=engine)


#Register all API routes under the main application
app.include_router(api_router)
