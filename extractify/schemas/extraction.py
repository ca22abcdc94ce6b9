"""Extraction job, request and response schemas."""

from datetime import datetime

from pydantic import ConfigDict, Field

from extractify.schemas.common import CamelModel


class ExtractionJobFile(CamelModel):
    """A source file referenced by a queued job."""

    file_name: str = Field(min_length=1)
    file_type: str = Field(min_length=1)
    file_size: int = Field(ge=0)
    file_url: str = Field(min_length=1)
    source_order: int = Field(ge=0)


class ExtractionJobPayload(CamelModel):
    """Queue message body for one extraction run."""

    extraction_id: str
    owner_id: str
    model_id: str
    model_version_id: str
    llm_model_id: str
    integration_target_ids: list[str] | None = None
    files: list[ExtractionJobFile] = Field(default_factory=list)


class ExtractionFileCreate(CamelModel):
    file_name: str = Field(min_length=1)
    file_type: str = Field(min_length=1)
    file_size: int = Field(ge=0)
    file_url: str = Field(min_length=1)


class ExtractionCreate(CamelModel):
    """Request body for submitting already-uploaded files for extraction."""

    model_id: str = Field(min_length=1)
    llm_model_id: str = Field(min_length=1)
    integration_target_ids: list[str] | None = None
    files: list[ExtractionFileCreate] = Field(min_length=1)


class ExtractionAccepted(CamelModel):
    extraction_id: str
    status: str
    job_id: str


class TokenUsageRead(CamelModel):
    input_tokens: int
    output_tokens: int


class ExtractionInputRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    file_name: str
    file_type: str
    file_size: int | None
    source_order: int


class IntegrationDeliveryRead(CamelModel):
    id: str
    target_id: str
    target_name: str | None
    target_type: str | None
    status: str
    response_status: int | None
    error_message: str | None
    created_at: datetime


class ExtractionRunRead(CamelModel):
    """Run status as surfaced to users."""

    id: str
    model_id: str
    model_version_id: str
    llm_model_id: str
    status: str
    result: dict[str, object] | None
    usage: TokenUsageRead | None
    error_message: str | None
    created_at: datetime
    completed_at: datetime | None
    inputs: list[ExtractionInputRead] = Field(default_factory=list)
    deliveries: list[IntegrationDeliveryRead] = Field(default_factory=list)
