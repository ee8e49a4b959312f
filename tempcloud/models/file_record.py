"""File metadata record model"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


DEFAULT_CONTENT_TYPE = "application/octet-stream"


class FileRecord(BaseModel):
    """Metadata persisted for every upload, pending or active"""

    model_config = ConfigDict(frozen=True)

    id: str
    filename: str = Field(min_length=1)
    size: int = Field(ge=0)
    content_type: str = DEFAULT_CONTENT_TYPE
    created_at: int  # unix seconds
    expires_at: int  # unix seconds
    downloads_remaining: Optional[int] = Field(default=None, ge=0)  # None = unlimited
    password_hash: Optional[str] = None  # None = no password
    blob_key: str

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def is_exhausted(self) -> bool:
        return self.downloads_remaining is not None and self.downloads_remaining <= 0


class UploadSession(BaseModel):
    """Result of starting an upload"""

    id: str
    blob_key: str
    expires_at: int


class FileSummary(BaseModel):
    """Public view of an active file; never carries the password hash"""

    filename: str
    size: int
    content_type: str
    created_at: int
    expires_at: int
    downloads_remaining: Optional[int] = None
    has_password: bool

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileSummary":
        return cls(
            filename=record.filename,
            size=record.size,
            content_type=record.content_type,
            created_at=record.created_at,
            expires_at=record.expires_at,
            downloads_remaining=record.downloads_remaining,
            has_password=record.has_password,
        )
