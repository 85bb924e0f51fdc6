"""
Storefront Idempotency Store: One Order per Payment.

The payment processor redirects back to checkout, and shoppers refresh
the confirmation page, so completion can be requested several times for
the same payment. Each completion is keyed deterministically from the
operation and its parameters; the first caller runs it, later callers get
the stored result, and a caller arriving mid-flight is turned away.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable
import hashlib
import json


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdempotencyStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class OperationInProgress(RuntimeError):
    """Another caller holds the key and has not finished yet."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Operation {key} is already in progress")


@dataclass
class IdempotencyRecord:
    """Outcome of one keyed operation."""
    key: str
    operation: str
    result: Any = None
    status: IdempotencyStatus = IdempotencyStatus.IN_PROGRESS
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    expires_at: datetime | None = None
    error: str | None = None

    def expired_at(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "operation": self.operation,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


def generate_idempotency_key(operation: str, **params: Any) -> str:
    """Same operation and parameters always give the same key."""
    data = json.dumps({"op": operation, **params}, sort_keys=True, default=str)
    return hashlib.sha256(data.encode()).hexdigest()[:32]


class IdempotencyStore:
    """In-process idempotency store.

    Records live for ``default_ttl_seconds`` (a day by default), long
    enough to absorb any processor retry. The durable guard for orders is
    the unique payment id on the orders table; this store only settles
    concurrent duplicates inside one process.
    """

    def __init__(
        self,
        default_ttl_seconds: int = 24 * 3600,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._records: dict[str, IdempotencyRecord] = {}
        self.default_ttl = default_ttl_seconds
        self._clock = clock

    def check(self, key: str) -> IdempotencyRecord | None:
        """Return the live record for key, dropping it if it has expired."""
        record = self._records.get(key)
        if record is None:
            return None
        if record.expired_at(self._clock()):
            del self._records[key]
            return None
        return record

    def reserve(
        self,
        key: str,
        operation: str,
        ttl_seconds: int | None = None,
    ) -> IdempotencyRecord | None:
        """Claim key for a new run. None when the key is already claimed."""
        if self.check(key) is not None:
            return None

        now = self._clock()
        record = IdempotencyRecord(
            key=key,
            operation=operation,
            started_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds or self.default_ttl),
        )
        self._records[key] = record
        return record

    def complete(self, key: str, result: Any) -> bool:
        record = self._records.get(key)
        if not record:
            return False
        record.status = IdempotencyStatus.COMPLETED
        record.result = result
        record.completed_at = self._clock()
        return True

    def fail(self, key: str, error: str) -> bool:
        """Release key after a failed run so the next attempt starts fresh."""
        record = self._records.pop(key, None)
        if not record:
            return False
        record.status = IdempotencyStatus.FAILED
        record.error = error
        return True

    async def run_once(
        self,
        key: str,
        operation: str,
        func: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run func under key, or return what the completed run returned.

        Raises OperationInProgress while another run holds the key. A run
        that raises releases the key and re-raises.
        """
        if self.reserve(key, operation) is None:
            record = self.check(key)
            if record is not None and record.status is IdempotencyStatus.COMPLETED:
                return record.result
            raise OperationInProgress(key)

        try:
            result = await func()
        except Exception as exc:
            self.fail(key, str(exc))
            raise
        self.complete(key, result)
        return result

    def cleanup_expired(self) -> int:
        """Drop expired records. Returns how many went."""
        now = self._clock()
        stale = [k for k, v in self._records.items() if v.expired_at(now)]
        for k in stale:
            del self._records[k]
        return len(stale)
