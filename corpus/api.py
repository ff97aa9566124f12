"""FastAPI app: contributor intake, moderation and contribution statistics.

Routing and parameter parsing only; all behaviour lives in the pipelines.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .db import get_session
from .errors import AuthError, ConflictError, CorpusError, NotFoundError, StorageError, ValidationError
from .logging_config import setup_logging
from .pipelines import dedup, ingest, moderation, persons, stats
from .pipelines.pagination import clamp_limit
from .schemas import (
    AdminLoginRequest,
    ApproveByEmailRequest,
    BulkApprovalResponse,
    ContributeSentenceRequest,
    ContributionTotalsResponse,
    ContributorPageResponse,
    CreateSentencesRequest,
    DedupResponse,
    DeletionResponse,
    DistinctSentenceDTO,
    ErrorResponse,
    GuestRequest,
    GuestResponse,
    HealthResponse,
    LoginRequest,
    PersonDTO,
    RecorderStatsDTO,
    RecordingDTO,
    RecordingPageResponse,
    RecordingStatusResponse,
    SearchPageResponse,
    SentenceContributorDTO,
    SentenceDTO,
    SentencePageResponse,
    TokenResponse,
    TopRecordersResponse,
    TopSentenceContributorsResponse,
    TopSentenceRecordersResponse,
    UpdateNameRequest,
    UserDetailResponse,
    UserListingResponse,
)
from .security import Identity, get_identity, require_moderator
from .storage import ObjectStorage, get_object_storage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    Path(settings.moderation.upload_dir).mkdir(parents=True, exist_ok=True)
    logger.info("Application starting up")

    yield

    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Crowdsourced speech corpus: intake, moderation and statistics",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],  # Frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
def _error(status_code: int, error: str, detail: str | None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, "not_found", str(exc))


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    """Duplicate approval; the loser has already been marked superseded."""
    logger.warning(f"Conflict: {exc}")
    return _error(status.HTTP_409_CONFLICT, "conflict", str(exc))


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return _error(status.HTTP_400_BAD_REQUEST, "validation_error", str(exc))


@app.exception_handler(AuthError)
async def auth_handler(request: Request, exc: AuthError):
    code = status.HTTP_403_FORBIDDEN if exc.forbidden else status.HTTP_401_UNAUTHORIZED
    return _error(code, "forbidden" if exc.forbidden else "unauthorized", str(exc))


@app.exception_handler(StorageError)
async def storage_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error: {exc}")
    return _error(status.HTTP_502_BAD_GATEWAY, "storage_error", str(exc))


@app.exception_handler(CorpusError)
async def corpus_error_handler(request: Request, exc: CorpusError):
    logger.error(f"Unhandled domain error: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", str(exc))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error on {request.url.path}: {exc}", exc_info=exc)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", None)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=settings.version)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "guest": "/persons/guest",
            "persons": "/persons",
            "sentences": "/sentences",
            "recordings": "/recordings",
            "docs": "/docs",
        },
    }


# -- auth & persons ------------------------------------------------------------------


@app.post("/persons/guest", response_model=GuestResponse, status_code=status.HTTP_201_CREATED)
async def create_guest(
    request: GuestRequest,
    session: AsyncSession = Depends(get_session),
) -> GuestResponse:
    registration = await persons.register_guest(session, request.email, request.gender)
    return GuestResponse(
        message="Guest already registered" if registration.existed else "Guest registered",
        user_id=registration.person.id,
        existed=registration.existed,
    )


@app.post("/auth/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    session: AsyncSession = Depends(get_session),
) -> TokenResponse:
    _, token = await persons.login_user(session, request.email)
    return TokenResponse(message="Login user success", token=token)


@app.post("/auth/admin/login", response_model=TokenResponse)
async def admin_login(request: AdminLoginRequest) -> TokenResponse:
    token = persons.login_admin(request.username, request.password)
    return TokenResponse(message="Login admin success", token=token)


@app.get("/persons", response_model=UserListingResponse)
async def list_users(
    page: int = 1,
    limit: int = 20,
    fromDate: str | None = None,
    toDate: str | None = None,
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_moderator),
) -> UserListingResponse:
    listing = await stats.list_users(session, page, limit, from_date=fromDate, to_date=toDate)
    return UserListingResponse.model_validate(listing)


@app.get("/persons/top-recorders", response_model=TopRecordersResponse)
async def top_recorders(
    status_filter: int | None = Query(default=None, alias="status"),
    limit: int = 10,
    session: AsyncSession = Depends(get_session),
) -> TopRecordersResponse:
    rows = await stats.top_recorders(session, status=status_filter, limit=limit)
    return TopRecordersResponse(
        status=status_filter,
        limit=clamp_limit(limit),
        count=len(rows),
        data=[RecorderStatsDTO.model_validate(r) for r in rows],
    )


@app.get("/persons/top-sentence-contributors", response_model=TopSentenceContributorsResponse)
async def top_sentence_contributors(
    limit: int | None = None,
    session: AsyncSession = Depends(get_session),
) -> TopSentenceContributorsResponse:
    rows = await stats.top_sentence_contributors(session, limit=limit)
    return TopSentenceContributorsResponse(
        limit=limit,
        count=len(rows),
        data=[SentenceContributorDTO.model_validate(r) for r in rows],
    )


@app.get("/persons/top-contributors", response_model=ContributorPageResponse)
async def top_contributors(
    page: int = 1,
    limit: int = 10,
    session: AsyncSession = Depends(get_session),
) -> ContributorPageResponse:
    return ContributorPageResponse.model_validate(await stats.top_contributors(session, page, limit))


@app.get("/persons/top-sentence-recorders", response_model=TopSentenceRecordersResponse)
async def top_sentence_recorders(
    status_filter: int | None = Query(default=None, alias="status"),
    limit: int = 10,
    session: AsyncSession = Depends(get_session),
) -> TopSentenceRecordersResponse:
    rows = await stats.top_by_distinct_sentences(session, status=status_filter, limit=limit)
    return TopSentenceRecordersResponse(
        status=status_filter,
        limit=clamp_limit(limit),
        count=len(rows),
        data=[DistinctSentenceDTO.model_validate(r) for r in rows],
    )


@app.get("/persons/contributions", response_model=ContributionTotalsResponse)
async def contribution_totals(
    include: bool = True,
    page: int = 1,
    limit: int = 20,
    session: AsyncSession = Depends(get_session),
) -> ContributionTotalsResponse:
    totals = await stats.total_contributions(session, include_sentences=include, page=page, limit=limit)
    return ContributionTotalsResponse.model_validate(totals)


@app.get("/persons/search", response_model=SearchPageResponse)
async def search_persons(
    email: str | None = None,
    page: int = 1,
    limit: int = 20,
    session: AsyncSession = Depends(get_session),
) -> SearchPageResponse:
    return SearchPageResponse.model_validate(await stats.search_by_email(session, email, page, limit))


@app.post("/persons/approve-by-email", response_model=BulkApprovalResponse)
async def approve_by_email(
    request: ApproveByEmailRequest,
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_moderator),
) -> BulkApprovalResponse:
    result = await moderation.approve_recordings_by_email(
        session,
        request.email,
        from_date=request.from_date,
        to_date=request.to_date,
    )
    return BulkApprovalResponse.model_validate(result)


@app.get("/persons/{person_id}", response_model=UserDetailResponse)
async def get_user(
    person_id: int,
    session: AsyncSession = Depends(get_session),
) -> UserDetailResponse:
    return UserDetailResponse.model_validate(await stats.user_detail(session, person_id))


@app.patch("/persons/{person_id}", response_model=PersonDTO)
async def update_user(
    person_id: int,
    request: UpdateNameRequest,
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_moderator),
) -> PersonDTO:
    person = await persons.update_user_name(session, person_id, request.name)
    return PersonDTO.model_validate(person)


@app.delete("/persons/{person_id}", response_model=PersonDTO)
async def delete_user(
    person_id: int,
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_moderator),
) -> PersonDTO:
    person = await persons.delete_user(session, person_id)
    return PersonDTO.model_validate(person)


# -- sentences --------------------------------------------------------------------------


@app.post("/sentences", response_model=list[SentenceDTO], status_code=status.HTTP_201_CREATED)
async def create_sentences(
    request: CreateSentencesRequest,
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_moderator),
) -> list[SentenceDTO]:
    created = await ingest.create_sentences(session, request.contents)
    return [SentenceDTO.model_validate(s) for s in created]


@app.post("/sentences/contribute", response_model=SentenceDTO, status_code=status.HTTP_201_CREATED)
async def contribute_sentence(
    request: ContributeSentenceRequest,
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_identity),
) -> SentenceDTO:
    if identity.user_id is None:
        raise AuthError("Token does not identify a contributor", forbidden=True)
    sentence = await ingest.contribute_sentence(session, identity.user_id, request.content)
    return SentenceDTO.model_validate(sentence)


@app.get("/sentences", response_model=SentencePageResponse)
async def list_sentences(
    status_filter: int | None = Query(default=None, alias="status"),
    page: int = 1,
    limit: int = 20,
    session: AsyncSession = Depends(get_session),
) -> SentencePageResponse:
    result = await ingest.list_sentences(session, status=status_filter, page=page, limit=limit)
    return SentencePageResponse.model_validate(result)


# -- recordings -------------------------------------------------------------------------


@app.post("/recordings", response_model=RecordingDTO, status_code=status.HTTP_201_CREATED)
async def upload_recording(
    personId: int = Form(...),
    sentenceId: int = Form(...),
    audio: UploadFile = File(..., description="Recorded audio (WAV)"),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> RecordingDTO:
    """Upload an audio file for a sentence.

    The file is spooled to the upload directory, pushed to object storage
    and removed locally whatever the outcome.
    """
    if not audio.filename:
        raise ValidationError("Audio file is required")
    if audio.content_type and not audio.content_type.startswith("audio/"):
        raise ValidationError("Only audio files are allowed")

    content = await audio.read()
    if not content:
        raise ValidationError("Audio file is empty")
    if len(content) > settings.moderation.max_upload_bytes:
        raise ValidationError(
            f"Audio file exceeds {settings.moderation.max_upload_bytes} bytes"
        )

    upload_dir = Path(settings.moderation.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    local_path = upload_dir / f"{uuid.uuid4().hex}-{Path(audio.filename).name}"
    local_path.write_bytes(content)

    logger.info(f"Received audio upload {audio.filename} for sentence {sentenceId}")
    try:
        view = await ingest.upload_recording(
            session,
            storage,
            person_id=personId,
            sentence_id=sentenceId,
            local_path=local_path,
        )
    finally:
        local_path.unlink(missing_ok=True)
        await audio.close()
    return RecordingDTO.model_validate(view)


@app.get("/recordings", response_model=RecordingPageResponse)
async def list_recordings(
    page: int = 1,
    limit: int = 20,
    isApproved: int | None = None,
    email: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> RecordingPageResponse:
    result = await moderation.list_recordings(session, page, limit, status=isApproved, email=email)
    return RecordingPageResponse.model_validate(result)


@app.get("/recordings/status/{approval_status}", response_model=RecordingStatusResponse)
async def recordings_by_status(
    approval_status: str,
    session: AsyncSession = Depends(get_session),
) -> RecordingStatusResponse:
    views = await moderation.recordings_by_status(session, approval_status)
    return RecordingStatusResponse(
        is_approved=int(approval_status),
        count=len(views),
        data=[RecordingDTO.model_validate(v) for v in views],
    )


@app.patch("/recordings/{recording_id}/approve", response_model=RecordingDTO)
async def approve_recording(
    recording_id: int,
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_moderator),
) -> RecordingDTO:
    return RecordingDTO.model_validate(await moderation.approve_recording(session, recording_id))


@app.patch("/recordings/{recording_id}/reject", response_model=RecordingDTO)
async def reject_recording(
    recording_id: int,
    session: AsyncSession = Depends(get_session),
    _: Identity = Depends(require_moderator),
) -> RecordingDTO:
    return RecordingDTO.model_validate(await moderation.reject_recording(session, recording_id))


@app.delete("/recordings/{recording_id}", response_model=DeletionResponse)
async def delete_recording(
    recording_id: int,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
    _: Identity = Depends(require_moderator),
) -> DeletionResponse:
    result = await moderation.delete_recording(session, storage, recording_id)
    return DeletionResponse.model_validate(result)


@app.post("/recordings/admin/delete-duplicates", response_model=DedupResponse)
async def delete_duplicates(
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
    _: Identity = Depends(require_moderator),
) -> DedupResponse:
    result = await dedup.delete_duplicate_recordings(session, storage)
    return DedupResponse.model_validate(result)
