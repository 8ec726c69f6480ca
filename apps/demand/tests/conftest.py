from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest


@dataclass
class _Snap:
    id: str
    _data: Optional[Dict[str, Any]]
    reference: Any = None

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data or {})


class _DocRef:
    def __init__(self, col: "_Collection", doc_id: str):
        self._col = col
        self.id = doc_id

    def get(self, transaction=None):
        _ = transaction
        return _Snap(self.id, self._col._docs.get(self.id), self)

    def set(self, data: Dict[str, Any], merge: bool = False):
        if not merge or self.id not in self._col._docs:
            self._col._docs[self.id] = dict(data)
            return
        merged = dict(self._col._docs[self.id])
        merged.update(dict(data))
        self._col._docs[self.id] = merged

    def update(self, data: Dict[str, Any]):
        if self.id not in self._col._docs:
            raise AssertionError(f"update() on missing document {self.id}")
        self.set(data, merge=True)

    def delete(self):
        self._col._docs.pop(self.id, None)


_OPS = {
    "==": lambda a, b: a == b,
    ">=": lambda a, b: a is not None and a >= b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    "<": lambda a, b: a is not None and a < b,
}


class _Query:
    def __init__(self, col: "_Collection", filters: List[Tuple[str, str, Any]], order=None, limit=None):
        self._col = col
        self._filters = filters
        self._order = order
        self._limit: Optional[int] = limit

    def where(self, field: str, op: str, value: Any):
        if op not in _OPS:
            raise AssertionError(f"Unsupported op in fake db: {op}")
        return _Query(self._col, [*self._filters, (field, op, value)], self._order, self._limit)

    def order_by(self, field: str, direction: str = "ASCENDING"):
        return _Query(self._col, self._filters, (field, direction), self._limit)

    def limit(self, n: int):
        return _Query(self._col, self._filters, self._order, int(n))

    def stream(self) -> Iterable[_Snap]:
        out: List[_Snap] = []
        for doc_id, data in self._col._docs.items():
            if self._matches(data):
                out.append(_Snap(doc_id, dict(data), _DocRef(self._col, doc_id)))
        if self._order is not None:
            field, direction = self._order
            out.sort(key=lambda s: s._data.get(field) or 0, reverse=direction == "DESCENDING")
        if self._limit is not None:
            out = out[: self._limit]
        return out

    def _matches(self, data: Dict[str, Any]) -> bool:
        for field, op, value in self._filters:
            if not _OPS[op](data.get(field), value):
                return False
        return True


class _Collection(_Query):
    def __init__(self, docs: Dict[str, Dict[str, Any]]):
        self._docs = docs
        self._next_id = 0
        super().__init__(self, [])

    def document(self, doc_id: Optional[str] = None) -> _DocRef:
        if doc_id is None:
            doc_id = f"auto_{len(self._docs) + 1}"
            while doc_id in self._docs:
                doc_id += "x"
        return _DocRef(self, doc_id)


class FakeFirestore:
    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def collection(self, name: str) -> _Collection:
        docs = self._collections.setdefault(name, {})
        return _Collection(docs)

    def docs(self, name: str) -> List[Dict[str, Any]]:
        return [dict(d) for d in self._collections.get(name, {}).values()]


# 2026-03-18 (a Wednesday) 14:30 UTC.
NOW = datetime(2026, 3, 18, 14, 30, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)
HOUR_MS = 3_600_000


@pytest.fixture()
def fake_db():
    return FakeFirestore()


@pytest.fixture(autouse=True)
def _utc_buckets(monkeypatch):
    from apps.demand.settings import settings

    monkeypatch.setattr(settings, "DEMAND_TIMEZONE", "UTC")


def seed_load(db: FakeFirestore, load_id: str = "L1", **overrides) -> Dict[str, Any]:
    """Chicago -> Milwaukee dry van load."""
    db.collection("locations").document("loc-chi").set(
        {"latitude": 41.8781, "longitude": -87.6298, "state": "IL", "city": "Chicago", "zip_code": "60601"}
    )
    db.collection("locations").document("loc-mke").set(
        {"latitude": 43.0389, "longitude": -87.9065, "state": "WI", "city": "Milwaukee", "zip_code": "53202"}
    )
    load = {
        "pickup_location_id": "loc-chi",
        "delivery_location_id": "loc-mke",
        "weight": 15000,
        "rate": 850,
        "equipment_type": "Dry Van",
        "load_type": "ftl",
        "hazmat": False,
        "commodity": "general merchandise",
        "pickup_window_start": NOW_MS + 30 * HOUR_MS,
        "pickup_window_end": NOW_MS + 36 * HOUR_MS,
        "delivery_window_start": NOW_MS + 40 * HOUR_MS,
        "delivery_window_end": NOW_MS + 64 * HOUR_MS,
        "reference_number": f"REF-{load_id}",
    }
    load.update(overrides)
    db.collection("loads").document(load_id).set(load)
    return load
