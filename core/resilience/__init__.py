"""
Storefront Core Resilience: Fault Tolerance Primitives.

Provides reliability patterns for calls to the shared stock store:
- CircuitBreaker: Fail fast while the store is down
- DeadLetterQueue: Capture and retry failed bookkeeping calls
- IdempotencyStore: Prevent duplicate processing
"""
from core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
)
from core.resilience.dlq import (
    DeadLetter,
    DeadLetterQueue,
    DLQStats,
    DLQStatus,
)
from core.resilience.idempotency import (
    IdempotencyRecord,
    IdempotencyStatus,
    IdempotencyStore,
    OperationInProgress,
    generate_idempotency_key,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    # DLQ
    "DeadLetter",
    "DeadLetterQueue",
    "DLQStats",
    "DLQStatus",
    # Idempotency
    "IdempotencyRecord",
    "IdempotencyStatus",
    "IdempotencyStore",
    "OperationInProgress",
    "generate_idempotency_key",
]
