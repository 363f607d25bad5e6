"""
In-memory transfer history.

Reference HistoryStore used by tests and local runs. Production deployments
implement HistoryStore against their own transaction store.
"""

from datetime import datetime
from typing import Iterable, Optional

from riskgate.providers.base import HistoryStore
from riskgate.schemas.request import Transfer


class InMemoryHistoryStore(HistoryStore):

    def __init__(self, transfers: Iterable[Transfer] = ()):
        self._transfers: list[Transfer] = []
        for t in transfers:
            self.add(t)

    def add(self, transfer: Transfer) -> None:
        self._transfers.append(transfer)
        self._transfers.sort(key=lambda t: (t.timestamp, t.transfer_id))

    def __len__(self) -> int:
        return len(self._transfers)

    def _select(self, predicate, since: datetime, until: Optional[datetime]) -> list[Transfer]:
        return [
            t for t in self._transfers
            if t.status == "completed"
            and predicate(t)
            and t.timestamp >= since
            and (until is None or t.timestamp < until)
        ]

    async def transfers_from(
        self, party: str, since: datetime, until: Optional[datetime] = None
    ) -> list[Transfer]:
        return self._select(lambda t: t.sender == party, since, until)

    async def transfers_to(
        self, party: str, since: datetime, until: Optional[datetime] = None
    ) -> list[Transfer]:
        return self._select(lambda t: t.recipient == party, since, until)
