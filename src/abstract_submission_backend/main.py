"""
HTTP surface of the abstract submission service.

The edit link mailed to submitters is built from PUBLIC_BASE_URL when it is
set, otherwise from the request's Host header. The Host header is supplied by
the client, so production deployments should set PUBLIC_BASE_URL.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from .configuration import EDIT_VIEWS, load_settings
from .errors import SubmissionError, ValidationError
from .logging_setup import configure_logging
from .models import AbstractType, ErrorResponse, Settings, SubmissionView, SubmitResponse, UpdateResponse
from .submission_service import SubmissionService

logger = logging.getLogger(__name__)

settings = load_settings()
configure_logging(settings.log_level)

submission_service = SubmissionService.from_settings(settings)
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

# Public message for server-side failures, per endpoint; details stay in the logs
INTERNAL_ERRORS = {
    "/submit": "An error occurred while processing your submission.",
    "/edit": "An unexpected error occurred while fetching the submission.",
    "/update": "An error occurred while updating the submission.",
}
DEFAULT_INTERNAL_ERROR = "An unexpected error occurred."


@asynccontextmanager
async def lifespan(app: FastAPI):
    submission_service.store.database.ping()
    logger.info("Connected to the document store")
    await run_in_threadpool(submission_service.dispatcher.verify)
    yield
    submission_service.dispatcher.shutdown()


app = FastAPI(title="Abstract Submission API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.server.static_dir and Path(settings.server.static_dir).is_dir():
    app.mount("/static", StaticFiles(directory=settings.server.static_dir), name="static")


def get_submission_service() -> SubmissionService:
    return submission_service


def get_settings() -> Settings:
    return settings


def _internal_error(request: Request) -> JSONResponse:
    message = INTERNAL_ERRORS.get(request.url.path, DEFAULT_INTERNAL_ERROR)
    return JSONResponse(status_code=500, content={"error": message})


@app.exception_handler(SubmissionError)
async def submission_error_handler(request: Request, exc: SubmissionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"Error in {request.url.path} endpoint: {exc}")
        return _internal_error(request)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error in {request.url.path} endpoint")
    return _internal_error(request)


async def _read_json_object(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _origin(request: Request, config: Settings) -> str:
    if config.server.public_base_url:
        return config.server.public_base_url
    host = request.headers.get("host") or request.url.netloc
    return f"{request.url.scheme}://{host}"


@app.get("/", response_class=PlainTextResponse)
def root() -> str:
    return "Server is running"


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/submit", response_model=SubmitResponse, responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def submit(
    request: Request,
    service: SubmissionService = Depends(get_submission_service),
    config: Settings = Depends(get_settings),
) -> SubmitResponse:
    payload = await _read_json_object(request)
    unique_id = await run_in_threadpool(service.submit, payload, _origin(request, config))
    return SubmitResponse(message="Submission successful!", uniqueID=unique_id)


@app.get("/edit", responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}})
async def edit(
    request: Request,
    id: Optional[str] = None,
    format: Optional[str] = None,
    service: SubmissionService = Depends(get_submission_service),
    config: Settings = Depends(get_settings),
):
    if id is None or not id.strip():
        raise ValidationError("Unique ID is required in the query parameters.")
    if format and format not in EDIT_VIEWS:
        raise ValidationError(f"format must be one of {', '.join(EDIT_VIEWS)}.")

    submission: SubmissionView = await run_in_threadpool(service.fetch, id)

    if (format or config.server.edit_view) != "html":
        return submission

    return templates.TemplateResponse(
        request,
        "edit.html",
        {
            "submission": submission,
            "editing_open": service.is_editing_open(),
            "deadline": service.deadline_label,
            "abstract_types": [option.value for option in AbstractType],
            "update_url": str(request.url_for("update")),
        },
    )


@app.post(
    "/update",
    response_model=UpdateResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update(
    request: Request,
    service: SubmissionService = Depends(get_submission_service),
) -> UpdateResponse:
    payload = await _read_json_object(request)
    unique_id = payload.get("id")
    updated_data = payload.get("updatedData")
    if unique_id in (None, "") or updated_data is None:
        raise ValidationError("Unique ID and updated data are required.")

    updated = await run_in_threadpool(service.update, unique_id, updated_data)
    return UpdateResponse(message="Submission updated successfully!", updatedSubmission=updated)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.server.port)
