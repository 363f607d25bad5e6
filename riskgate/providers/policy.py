"""
Policy Providers.

StaticPolicyProvider serves snapshots built in code. YamlPolicyProvider
loads one ``<CODE>.yaml`` document per jurisdiction from a directory and
keeps each parsed snapshot for a TTL, so a briefly stale policy is
tolerated until the entry expires or ``invalidate()`` is called.

Example document (``config/policies/US.yaml``)::

    version: "2026-03"
    weights:
      sanctions: 0.35
    thresholds:
      escalate: 30
      reject: 70
      block: 90
    detectors:
      layering:
        reporting_threshold: 10000
    parties:
      wallet-123: US
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

import structlog
import yaml
from pydantic import ValidationError

from riskgate.exceptions import PolicyInvalidError
from riskgate.providers.base import PolicyProvider
from riskgate.schemas.policy import PolicySnapshot

logger = structlog.get_logger(__name__)


class StaticPolicyProvider(PolicyProvider):
    """In-process policies keyed by jurisdiction code."""

    def __init__(
        self,
        snapshots: Union[Mapping[str, PolicySnapshot], list[PolicySnapshot], None] = None,
        jurisdictions: Optional[Mapping[str, str]] = None,
    ):
        if snapshots is None:
            snapshots = {}
        if isinstance(snapshots, Mapping):
            self._snapshots = {code.upper(): snap for code, snap in snapshots.items()}
        else:
            self._snapshots = {snap.jurisdiction.upper(): snap for snap in snapshots}
        self._jurisdictions = {k: v.upper() for k, v in (jurisdictions or {}).items()}

    def put(self, snapshot: PolicySnapshot) -> None:
        self._snapshots[snapshot.jurisdiction.upper()] = snapshot

    async def get_policy(self, jurisdiction: str) -> Optional[PolicySnapshot]:
        return self._snapshots.get(jurisdiction.upper())

    async def resolve_jurisdiction(self, party_id: str) -> Optional[str]:
        return self._jurisdictions.get(party_id)


class YamlPolicyProvider(PolicyProvider):
    """
    Directory of YAML policy documents.

    A missing file yields None (the engine escalates). A file that does not
    parse or validate raises PolicyInvalidError; the orchestrator treats
    that as a missing policy too.

    The optional top-level ``parties`` mapping (party id → jurisdiction)
    backs resolve_jurisdiction(). The whole directory is scanned for it,
    independently of which policies were fetched, and the index shares the
    snapshot TTL. When two documents list the same party the first file in
    name order wins.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.directory = Path(directory)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[float, Optional[PolicySnapshot]]] = {}
        self._parties: Optional[tuple[float, dict[str, str]]] = None

    @classmethod
    def from_settings(cls, config) -> "YamlPolicyProvider":
        return cls(config.policy_dir, ttl_seconds=config.policy_cache_ttl_seconds)

    def invalidate(self, jurisdiction: Optional[str] = None) -> None:
        """Drop one cached snapshot, or all of them."""
        with self._lock:
            if jurisdiction is None:
                self._cache.clear()
                self._parties = None
            else:
                self._cache.pop(jurisdiction.upper(), None)
        logger.info("policy_cache_invalidated", jurisdiction=jurisdiction or "*")

    async def get_policy(self, jurisdiction: str) -> Optional[PolicySnapshot]:
        code = jurisdiction.upper()
        now = self._clock()
        with self._lock:
            cached = self._cache.get(code)
            if cached is not None and cached[0] > now:
                return cached[1]

        snapshot = await asyncio.to_thread(self._load, code)
        with self._lock:
            self._cache[code] = (now + self.ttl_seconds, snapshot)
        return snapshot

    async def resolve_jurisdiction(self, party_id: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            cached = self._parties
        if cached is None or cached[0] <= now:
            index = await asyncio.to_thread(self._load_parties)
            cached = (now + self.ttl_seconds, index)
            with self._lock:
                self._parties = cached
        return cached[1].get(party_id)

    def _load_parties(self) -> dict[str, str]:
        index: dict[str, str] = {}
        owners: dict[str, str] = {}
        for path in sorted(self.directory.glob("*.yaml")):
            code = path.stem.upper()
            try:
                with path.open("r", encoding="utf-8") as fh:
                    document: Any = yaml.safe_load(fh) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning("party_index_skipped", jurisdiction=code, error=str(e))
                continue
            parties = document.get("parties") if isinstance(document, dict) else None
            if not isinstance(parties, dict):
                continue
            for party, target in parties.items():
                party, target = str(party), str(target).upper()
                if party in index:
                    if index[party] != target:
                        logger.warning(
                            "party_jurisdiction_conflict",
                            party_id=party,
                            kept=index[party],
                            kept_from=owners[party],
                            ignored=target,
                            ignored_from=code,
                        )
                    continue
                index[party] = target
                owners[party] = code
        logger.info("party_index_loaded", parties=len(index))
        return index

    def _load(self, code: str) -> Optional[PolicySnapshot]:
        path = self.directory / f"{code}.yaml"
        if not path.is_file():
            logger.warning("policy_file_missing", jurisdiction=code, path=str(path))
            return None

        try:
            with path.open("r", encoding="utf-8") as fh:
                document: Any = yaml.safe_load(fh) or {}
        except yaml.YAMLError as e:
            raise PolicyInvalidError(code, f"unparseable YAML: {e}") from e

        if not isinstance(document, dict):
            raise PolicyInvalidError(code, "document root must be a mapping")

        parties = document.pop("parties", None) or {}
        if not isinstance(parties, dict):
            raise PolicyInvalidError(code, "'parties' must be a mapping")

        try:
            snapshot = PolicySnapshot.from_document(code, document)
        except ValidationError as e:
            raise PolicyInvalidError(code, str(e)) from e

        logger.info("policy_loaded", jurisdiction=code, version=snapshot.version)
        return snapshot
