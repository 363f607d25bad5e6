"""
Audit Trail — append-only record of every fresh decision.

DESIGN:
  1. Every non-cached decision is written to the sink before it is cached
     or published.
  2. The sink is append-only: records are never modified or deleted, and a
     second append with the same record_id is rejected.
  3. Write failures are retried with exponential backoff. If every attempt
     fails an operational alert fires and the decision is still returned.
"""

import threading
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import structlog

from riskgate.config import Settings, settings as default_settings
from riskgate.exceptions import AuditWriteError
from riskgate.schemas.audit import AuditRecord
from riskgate.services.resilience import RetryPolicy, retry_with_backoff

logger = structlog.get_logger(__name__)

AlertCallback = Callable[[str, dict], Awaitable[None]]


class AuditSink(ABC):

    @abstractmethod
    async def append(self, record: AuditRecord) -> None:
        """Persist one record. Raises AuditWriteError when it cannot."""


class InMemoryAuditSink(AuditSink):
    """Append-only list of records, for tests and single-process runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: list[AuditRecord] = []
        self._ids: set[str] = set()

    async def append(self, record: AuditRecord) -> None:
        with self._lock:
            if record.record_id in self._ids:
                raise AuditWriteError(record.record_id, "duplicate record_id")
            self._records.append(record)
            self._ids.add(record.record_id)

    @property
    def records(self) -> tuple[AuditRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def for_idempotency_key(self, key: str) -> list[AuditRecord]:
        with self._lock:
            return [r for r in self._records if r.decision.idempotency_key == key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class OperationalAlerter:
    """
    Raises an operational alert.

    Always logs at error level; an optional async callback forwards the
    alert to paging or ticketing. Callback failures are logged.
    """

    def __init__(self, callback: Optional[AlertCallback] = None):
        self.callback = callback
        self.alerts: list[tuple[str, dict]] = []

    async def alert(self, event: str, details: dict) -> None:
        self.alerts.append((event, details))
        logger.error("operational_alert", alert=event, **details)
        if self.callback is None:
            return
        try:
            await self.callback(event, details)
        except Exception as e:
            logger.error("operational_alert_delivery_failed", alert=event, error=str(e))


class _RetryableAuditError(AuditWriteError):
    pass


class AuditWriter:
    """Retrying front for an AuditSink."""

    def __init__(
        self,
        sink: AuditSink,
        retry_policy: Optional[RetryPolicy] = None,
        alerter: Optional[OperationalAlerter] = None,
    ):
        self.sink = sink
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3)
        self.alerter = alerter if alerter is not None else OperationalAlerter()

    @classmethod
    def from_settings(
        cls,
        sink: AuditSink,
        config: Settings = default_settings,
        alerter: Optional[OperationalAlerter] = None,
    ) -> "AuditWriter":
        policy = RetryPolicy(
            max_attempts=config.audit_retry_attempts,
            base_delay=config.audit_retry_base_delay,
            max_delay=config.audit_retry_max_delay,
        )
        return cls(sink, retry_policy=policy, alerter=alerter)

    async def write(self, record: AuditRecord) -> bool:
        """
        Append with retries. Returns False once attempts are exhausted.

        A duplicate record_id is not retried: the sink has already refused
        it for good.
        """
        async def attempt() -> None:
            try:
                await self.sink.append(record)
            except AuditWriteError as e:
                if e.details.get("reason") == "duplicate record_id":
                    raise
                raise _RetryableAuditError(record.record_id, e.details.get("reason", str(e))) from e
            except Exception as e:
                raise _RetryableAuditError(record.record_id, str(e)) from e

        try:
            await retry_with_backoff(
                attempt,
                policy=self.retry_policy,
                retry_on=(_RetryableAuditError,),
                operation_name="audit_append",
            )
        except AuditWriteError as e:
            await self.alerter.alert(
                "audit_write_failed",
                {
                    "record_id": record.record_id,
                    "decision_id": record.decision.decision_id,
                    "idempotency_key": record.decision.idempotency_key,
                    "reason": e.details.get("reason", str(e)),
                },
            )
            return False

        logger.info(
            "audit_recorded",
            record_id=record.record_id,
            decision_id=record.decision.decision_id,
        )
        return True
