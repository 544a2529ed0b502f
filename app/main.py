import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings, load_project_env

load_project_env()

from app.api.routes_chat import router as chat_router
from app.api.routes_health import router as health_router
from app.core.errors import ApplicationError
from app.services.chat_store import init_db

logger = logging.getLogger("chatstream.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="chatstream", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApplicationError)
async def application_error_handler(request: Request, exc: ApplicationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = errors[0].get("msg", "invalid request") if errors else "invalid request"
    error = ApplicationError.bad_request(f"Invalid request: {detail}")
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = ApplicationError.internal_server_error()
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


app.include_router(health_router)
app.include_router(chat_router)
