"""In-memory keyed store with a versioned snapshot format.

Records are addressed by ``(entity_type, owner, nonce)``. Older snapshot
layouts are upgraded by ``migrate_record`` when loaded; the engine only ever
sees current dataclasses.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, fields
from typing import Any

from ..constants import SCALE
from ..errors import InvalidConfig
from ..models import (
    BORROWER,
    LP_POSITION,
    POSITION,
    BorrowerAccount,
    LeveragedPosition,
    LPPosition,
    position_borrower,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

Key = tuple[str, str, int]

_RECORD_TYPES: dict[str, type] = {
    "borrower": BorrowerAccount,
    "position": LeveragedPosition,
    LP_POSITION: LPPosition,
}


def _kind_of(entity_type: str) -> str:
    # Borrower keys are namespaced per market, e.g. "borrower:USDC"
    return entity_type.split(":", 1)[0]


def migrate_record(kind: str, data: dict[str, Any], version: int) -> dict[str, Any]:
    """Upgrade a raw record from ``version`` to ``SCHEMA_VERSION``."""
    if version > SCHEMA_VERSION:
        raise InvalidConfig(
            "Snapshot is newer than this engine", version=version, supported=SCHEMA_VERSION
        )
    data = dict(data)
    if version < 2:
        if kind == POSITION:
            if "borrowed_usdc" in data:
                data["borrowed_amount"] = data.pop("borrowed_usdc")
            if "token" in data:
                data["collateral_asset"] = data.pop("token")
            if "collateral" in data:
                data["collateral_amount"] = data.pop("collateral")
            data.setdefault("entry_exchange_rate_index", SCALE)
            data.setdefault(
                "borrower", position_borrower(data["owner"], data["position_id"])
            )
            for legacy in ("current_value", "yield_earned", "bump", "id"):
                data.pop(legacy, None)
        elif kind == BORROWER:
            # v1 borrowers tracked a timestamp instead of an index snapshot
            if "amount_borrowed" in data:
                data["principal"] = data.pop("amount_borrowed")
            if "borrower" in data:
                data["owner"] = data.pop("borrower")
            data.pop("borrow_timestamp", None)
            data.setdefault("borrow_index", SCALE)
    return data


class InMemoryStore:
    """Dictionary-backed ``KeyedStore``."""

    def __init__(self) -> None:
        self._records: dict[Key, Any] = {}
        self._nonces: dict[tuple[str, str], int] = {}

    def get(self, key: Key) -> Any | None:
        return self._records.get(key)

    def put(self, key: Key, record: Any) -> None:
        self._records[key] = record

    def next_nonce(self, entity_type: str, owner: str) -> int:
        """Return the next unused nonce; nonces are never reused."""
        nonce = self._nonces.get((entity_type, owner), 0)
        self._nonces[(entity_type, owner)] = nonce + 1
        return nonce

    def records(self, entity_type: str | None = None) -> list[tuple[Key, Any]]:
        return [
            (key, record)
            for key, record in sorted(self._records.items())
            if entity_type is None or key[0] == entity_type
        ]

    @contextmanager
    def atomic(self) -> Iterator[None]:
        keys = dict(self._records)
        states = {key: dict(vars(record)) for key, record in self._records.items()}
        nonces = dict(self._nonces)
        try:
            yield
        except BaseException:
            for key, record in keys.items():
                vars(record).clear()
                vars(record).update(states[key])
            self._records = keys
            self._nonces = nonces
            raise

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def dump(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "records": [
                {"key": list(key), "data": asdict(record)}
                for key, record in sorted(self._records.items())
            ],
            "nonces": [
                {"entity_type": et, "owner": owner, "next": nxt}
                for (et, owner), nxt in sorted(self._nonces.items())
            ],
        }

    @classmethod
    def load(cls, snapshot: dict[str, Any]) -> InMemoryStore:
        version = int(snapshot.get("schema_version", 1))
        if version > SCHEMA_VERSION:
            raise InvalidConfig(
                "Snapshot is newer than this engine", version=version, supported=SCHEMA_VERSION
            )
        store = cls()
        for item in snapshot.get("records", []):
            entity_type, owner, nonce = item["key"]
            kind = _kind_of(entity_type)
            record_type = _RECORD_TYPES.get(kind)
            if record_type is None:
                raise InvalidConfig("Unknown record type in snapshot", entity_type=entity_type)
            data = migrate_record(kind, item["data"], version)
            allowed = {f.name for f in fields(record_type)}
            store.put(
                (entity_type, owner, int(nonce)),
                record_type(**{k: v for k, v in data.items() if k in allowed}),
            )
        for item in snapshot.get("nonces", []):
            store._nonces[(item["entity_type"], item["owner"])] = int(item["next"])
        if version < SCHEMA_VERSION:
            logger.info("Migrated store snapshot from schema v%d to v%d", version, SCHEMA_VERSION)
        return store
