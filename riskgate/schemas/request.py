"""
Assessment request and transfer history schemas.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TransactionContext(BaseModel):
    """The transaction being assessed."""
    model_config = ConfigDict(frozen=True)

    amount: float = Field(ge=0)
    asset: str = "USD"
    sender: str = Field(min_length=1)
    recipient: str = Field(min_length=1)
    counterparties: tuple[str, ...] = ()
    timestamp: datetime
    transaction_id: Optional[str] = None
    sender_jurisdiction: Optional[str] = None
    recipient_jurisdiction: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("sender_jurisdiction", "recipient_jurisdiction")
    @classmethod
    def _upper_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else None


class AssessmentRequest(BaseModel):
    """
    One compliance evaluation.

    ``checks`` restricts the run to the named sources; ``None`` runs every
    configured Signal Provider and Pattern Detector.
    """
    model_config = ConfigDict(frozen=True)

    subject_id: str = Field(min_length=1)
    jurisdiction: str = Field(min_length=2, max_length=8)
    context: TransactionContext
    checks: Optional[tuple[str, ...]] = None
    idempotency_key: str = Field(min_length=1, max_length=256)
    deadline_seconds: Optional[float] = Field(default=None, gt=0)

    @field_validator("jurisdiction")
    @classmethod
    def _upper_jurisdiction(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("idempotency_key", "subject_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @model_validator(mode="after")
    def _checks_not_empty(self) -> "AssessmentRequest":
        if self.checks is not None and len(self.checks) == 0:
            raise ValueError("checks must be omitted or name at least one source")
        return self


class Transfer(BaseModel):
    """A historical transfer as returned by a HistoryStore."""
    model_config = ConfigDict(frozen=True)

    transfer_id: str
    sender: str
    recipient: str
    amount: float = Field(ge=0)
    timestamp: datetime
    asset: str = "USD"
    status: str = "completed"

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)
