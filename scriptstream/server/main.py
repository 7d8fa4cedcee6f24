"""
MODULE OVERVIEW:
The FastAPI application factory for the development backend.

WHAT IS HAPPENING HERE:
We use a `lifespan` context manager. Generation jobs are started lazily by the
websocket route, so startup has nothing to spawn; shutdown cancels every job
still streaming so no task outlives the server.
Errors are rendered as `{statusCode, message, error}`, the body shape the client's
HttpClient parses into an ApiError.
"""

from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from scriptstream.server import simulation
from scriptstream.server.connection_manager import manager
from scriptstream.server.middleware import TimingMiddleware
from scriptstream.server.routes import auth, generation


@asynccontextmanager
async def lifespan(app: FastAPI):
    # STARTUP
    logger.info("ScriptStream dev server starting up...")

    yield

    # SHUTDOWN
    logger.info(f"Server shutting down. Cancelling {len(simulation.background_tasks)} running generations...")
    await simulation.cancel_all()
    logger.info("Shutdown complete.")


def error_response(status_code: int, message) -> JSONResponse:
    try:
        phrase = HTTPStatus(status_code).phrase
    except ValueError:
        phrase = "Error"
    return JSONResponse(
        status_code=status_code,
        content={"statusCode": status_code, "message": message, "error": phrase},
    )


app = FastAPI(
    title="ScriptStream Dev Server",
    description="Local stand-in for the generation backend: auth, generation records and the live /generation socket",
    version="1.0.0",
    lifespan=lifespan,
)

# Add Middlewares
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, exc.detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = [f"{'.'.join(str(p) for p in err['loc'][1:])}: {err['msg']}" for err in exc.errors()]
    return error_response(422, messages)


# Route registrations
app.include_router(auth.router, tags=["Auth"])
app.include_router(generation.router, tags=["Generation"])


@app.get("/healthz", tags=["Ops"])
async def health_check():
    return {"status": "ok"}


@app.get("/stats", tags=["Ops"])
async def get_stats():
    return manager.get_stats()
