from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .market import RankedResult

ENVELOPE_VERSION = 1


class CacheEntry(BaseModel):
    """Versioned envelope persisted once per dataset."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    version: int = Field(default=ENVELOPE_VERSION)
    payload: RankedResult
    timestamp: int = Field(description="Epoch ms at which the payload was produced")
    last_update_attempt: int = Field(description="Epoch ms of the most recent refresh attempt")
    last_update_failed: bool = Field(default=False)
    is_partial: bool = Field(default=False)

    @model_validator(mode="after")
    def _attempt_not_before_payload(self) -> "CacheEntry":
        if self.timestamp > self.last_update_attempt:
            raise ValueError("timestamp must not be later than lastUpdateAttempt")
        return self

    @classmethod
    def from_result(cls, result: RankedResult) -> "CacheEntry":
        return cls(
            payload=result,
            timestamp=result.timestamp,
            last_update_attempt=result.timestamp,
            last_update_failed=False,
            is_partial=result.is_partial,
        )

    def mark_failed(self, attempted_at: int) -> "CacheEntry":
        """Same payload, stamped with a failed attempt."""
        return self.model_copy(
            update={
                "last_update_attempt": max(attempted_at, self.timestamp),
                "last_update_failed": True,
            }
        )

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.timestamp
