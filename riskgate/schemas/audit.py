"""
Audit record schema — append-only snapshot of a decision.
"""

import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from riskgate.schemas.decision import Decision


def canonical_hash(payload: Any) -> str:
    """SHA-256 over sorted, compact JSON."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


class AuditRecord(BaseModel):
    """
    Immutable audit entry.

    input_hash: hash of the canonical request, so a reviewer can prove which
    input produced the decision without storing the raw payload twice.
    record_hash: hash over everything else in the record.
    """
    model_config = ConfigDict(frozen=True)

    record_id: str
    decision: Decision
    input_hash: str
    notes: tuple[str, ...] = ()
    created_at: datetime
    record_hash: str = ""

    @classmethod
    def create(
        cls,
        decision: Decision,
        request_payload: dict[str, Any],
        notes: tuple[str, ...] = (),
    ) -> "AuditRecord":
        record_id = f"aud_{uuid.uuid4().hex[:16]}"
        created_at = datetime.now(timezone.utc)
        input_hash = canonical_hash(request_payload)
        record_hash = canonical_hash({
            "record_id": record_id,
            "decision": decision.model_dump(mode="json"),
            "input_hash": input_hash,
            "notes": list(notes),
            "created_at": created_at.isoformat(),
        })
        return cls(
            record_id=record_id,
            decision=decision,
            input_hash=input_hash,
            notes=notes,
            created_at=created_at,
            record_hash=record_hash,
        )

    def verify(self) -> bool:
        """Recompute record_hash and compare."""
        expected = canonical_hash({
            "record_id": self.record_id,
            "decision": self.decision.model_dump(mode="json"),
            "input_hash": self.input_hash,
            "notes": list(self.notes),
            "created_at": self.created_at.isoformat(),
        })
        return expected == self.record_hash
