"""Pydantic request/response models for the HTTP layer.

Response models read straight from the pipeline dataclasses and ORM rows
(``from_attributes``), so the pipelines never depend on this module.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# -- generic ---------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


# -- persons & auth ----------------------------------------------------------------


class GuestRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    gender: str


class GuestResponse(BaseModel):
    message: str
    user_id: int
    existed: bool


class LoginRequest(BaseModel):
    email: str


class AdminLoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    message: str
    token: str


class UpdateNameRequest(BaseModel):
    name: str | None = None


class PersonDTO(ORMModel):
    id: int
    email: str
    name: str | None = None
    gender: str
    role: str
    created_at: datetime


class ApproveByEmailRequest(BaseModel):
    email: str
    from_date: str | None = Field(default=None, alias="fromDate")
    to_date: str | None = Field(default=None, alias="toDate")

    model_config = ConfigDict(populate_by_name=True)


class BulkApprovalResponse(ORMModel):
    email: str
    matched_count: int
    approved_count: int
    conflict_count: int
    skipped_count: int
    conflicts: list[int]


# -- sentences ---------------------------------------------------------------------


class CreateSentencesRequest(BaseModel):
    contents: list[str] = Field(min_length=1)


class ContributeSentenceRequest(BaseModel):
    content: str = Field(min_length=1)


class SentenceDTO(ORMModel):
    id: int
    content: str
    status: int
    created_by: str | None = None
    created_at: datetime


class SentencePageResponse(ORMModel):
    sentences: list[SentenceDTO]
    count: int
    total_count: int
    total_pages: int
    current_page: int


# -- recordings --------------------------------------------------------------------


class RecordingDTO(ORMModel):
    recording_id: int
    person_id: int
    sentence_id: int
    audio_url: str
    is_approved: int
    duration: float | None = None
    recorded_at: datetime
    email: str | None = None
    content: str | None = None
    sentence_status: int | None = None


class RecordingPageResponse(ORMModel):
    recordings: list[RecordingDTO]
    count: int
    total_count: int
    total_pages: int
    current_page: int
    total_duration_seconds: float
    total_duration_hours: float
    approved_count: int
    approved_duration_seconds: float
    approved_duration_hours: float
    pending_count: int
    rejected_count: int


class RecordingStatusResponse(BaseModel):
    is_approved: int
    count: int
    data: list[RecordingDTO]


class DeletionResponse(ORMModel):
    recording_id: int
    sentence_id: int
    sentence_deleted: bool
    audio_deleted: bool


class DedupResponse(ORMModel):
    sentences_processed: int
    recordings_deleted: int
    dangling_groups: int
    storage_failures: list[str]


# -- statistics --------------------------------------------------------------------


class RecordingEntryDTO(ORMModel):
    sentence_id: int
    content: str | None = None
    duration: float | None = None
    recorded_at: datetime
    audio_url: str | None = None
    is_approved: int


class SentenceEntryDTO(ORMModel):
    sentence_id: int
    content: str
    status: int
    created_at: datetime
    created_by: str | None = None


class UserStatsDTO(ORMModel):
    user_id: int
    email: str
    name: str | None = None
    gender: str
    role: str
    created_at: datetime
    total_recordings: int
    total_recording_duration: float
    approved_recordings: int
    pending_recordings: int
    total_sentence_contributions: int
    recordings: list[RecordingEntryDTO]
    sentence_contributions: list[SentenceEntryDTO]


class UserListingResponse(ORMModel):
    users: list[UserStatsDTO]
    count: int
    total_count: int
    total_pages: int
    current_page: int
    from_date: datetime | None = None
    to_date: datetime | None = None
    total_male: int
    total_female: int
    total_completed_sentences: int
    total_contributed_sentences: int


class RecorderStatsDTO(ORMModel):
    user_id: int
    email: str | None = None
    gender: str | None = None
    created_at: datetime | None = None
    total_recordings: int
    approved_recordings: int
    pending_recordings: int
    rejected_recordings: int


class RecordedSentenceDTO(ORMModel):
    sentence_id: int
    content: str | None = None
    recording_count: int
    approved_count: int


class SentenceContributorDTO(ORMModel):
    user_email: str
    user_id: int | None = None
    created_at: datetime | None = None
    total_sentences: int
    status1_count: int
    status2_count: int
    status3_count: int
    recorded_sentences: list[RecordedSentenceDTO]
    recording_total_count: int


class ContributorDTO(ORMModel):
    user_id: int | None = None
    email: str
    gender: str | None = None
    role: str | None = None
    created_at: datetime | None = None
    total_contributed_sentences: int
    total_recordings: int
    approved_recordings: int


class ContributorPageResponse(ORMModel):
    users: list[ContributorDTO]
    count: int
    total_count: int
    total_pages: int
    current_page: int


class DistinctSentenceDTO(ORMModel):
    user_id: int
    email: str | None = None
    unique_sentences: int
    created_at: datetime | None = None


class TopRecordersResponse(BaseModel):
    status: int | None = None
    limit: int
    count: int
    data: list[RecorderStatsDTO]


class TopSentenceContributorsResponse(BaseModel):
    limit: int | None = None
    count: int
    data: list[SentenceContributorDTO]


class TopSentenceRecordersResponse(BaseModel):
    status: int | None = None
    limit: int
    count: int
    data: list[DistinctSentenceDTO]


class UserDetailResponse(ORMModel):
    person_id: int
    email: str
    name: str | None = None
    gender: str
    role: str
    created_at: datetime
    sentences_done: list[RecordedSentenceDTO]
    total_recording_duration: float
    total_sentences_done: int
    total_contributed_by_user: int
    created_sentences: list[SentenceEntryDTO]


class ContributionTotalsResponse(ORMModel):
    total_contributed: int
    current_page: int
    page_limit: int
    sentences: list[SentenceEntryDTO] | None = None
    count: int | None = None
    total_pages: int | None = None


class SearchHitDTO(ORMModel):
    id: int
    email: str
    gender: str
    role: str
    created_at: datetime
    recording_count: int
    approved_count: int
    pending_count: int
    total_duration: float


class SearchPageResponse(ORMModel):
    users: list[SearchHitDTO]
    count: int
    total_count: int
    total_pages: int
    current_page: int
    search_email: str
