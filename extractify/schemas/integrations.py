"""Stored integration target configuration schemas."""

from typing import Literal

from pydantic import AnyHttpUrl, Field, model_validator

from extractify.schemas.common import CamelModel

SheetsTransform = Literal["raw", "json", "join", "date_iso"]


class EncryptedSecret(CamelModel):
    """AES-256-GCM ciphertext envelope; all binary fields are base64."""

    version: Literal["v1"] = "v1"
    algorithm: Literal["aes-256-gcm"] = "aes-256-gcm"
    iv: str = Field(min_length=1)
    tag: str = Field(min_length=1)
    data: str = Field(min_length=1)


class WebhookConfig(CamelModel):
    url: AnyHttpUrl
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_ms: int = Field(default=10_000, gt=0)
    secret: EncryptedSecret | None = None


class SheetsColumnMapping(CamelModel):
    column_name: str = Field(min_length=1)
    source_path: str = Field(min_length=1)
    transform: SheetsTransform = "raw"
    join_with: str | None = None
    fallback: str | None = None

    @model_validator(mode="after")
    def _require_join_separator(self) -> "SheetsColumnMapping":
        if self.transform == "join" and not self.join_with:
            raise ValueError("joinWith is required when transform is join")
        return self


class SheetsModelMapping(CamelModel):
    model_id: str = Field(min_length=1)
    model_version_id: str = Field(min_length=1)
    columns: list[SheetsColumnMapping] = Field(min_length=1)


class SheetsOAuth(CamelModel):
    provider: Literal["google"] = "google"
    account_email: str | None = None
    scopes: list[str] = Field(default_factory=list)
    refresh_token: EncryptedSecret
    access_token: EncryptedSecret | None = None
    # Epoch milliseconds.
    access_token_expires_at: int | None = Field(default=None, gt=0)


class SheetsConfig(CamelModel):
    spreadsheet_id: str = Field(min_length=1)
    sheet_name: str = Field(min_length=1)
    header_row: int = Field(default=1, gt=0)
    write_mode: Literal["append"] = "append"
    column_policy: Literal["auto_add"] = "auto_add"
    oauth: SheetsOAuth | None = None
    model_mappings: list[SheetsModelMapping] = Field(min_length=1)

    def find_mapping(self, model_id: str, model_version_id: str) -> SheetsModelMapping | None:
        for mapping in self.model_mappings:
            if mapping.model_id == model_id and mapping.model_version_id == model_version_id:
                return mapping
        return None
