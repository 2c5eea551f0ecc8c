import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import auth
from app.exceptions import DraftValidationError, InvalidTransitionError, NotFoundError, SubmissionValidationError
from app.i18n import _
from app.routers import admin, applications, documents, messages, meta, organizations, reports, shelters
from app.routers import auth as auth_router
from app.settings import app_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # The identity driver is selected once, and fails fast if misconfigured.
    app.state.authenticator = auth.build_authenticator(app_settings)
    logger.info("Using the %s auth driver", app.state.authenticator.name)
    yield


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", app_settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router.router)
app.include_router(organizations.router)
app.include_router(applications.router)
app.include_router(documents.router)
app.include_router(messages.router)
app.include_router(admin.router)
app.include_router(reports.router)
app.include_router(shelters.router)
app.include_router(meta.router)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse({"detail": _(exc.message)}, status_code=status.HTTP_404_NOT_FOUND)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return JSONResponse(
        {"detail": exc.message, "valid_transitions": exc.valid_transitions},
        status_code=status.HTTP_409_CONFLICT,
    )


@app.exception_handler(SubmissionValidationError)
async def submission_validation_handler(request: Request, exc: SubmissionValidationError) -> JSONResponse:
    return JSONResponse(
        {"detail": exc.message, "missing_fields": exc.missing_fields},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


@app.exception_handler(DraftValidationError)
async def draft_validation_handler(request: Request, exc: DraftValidationError) -> JSONResponse:
    return JSONResponse(
        {"detail": _(exc.message), "errors": exc.errors},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


@app.exception_handler(500)
async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        {"detail": _("An unexpected error occurred. No changes were saved.")},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
