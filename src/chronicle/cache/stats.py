"""Process-wide cache counters."""

import threading
from typing import Any

COUNTERS = (
    "l1_hits",
    "l1_misses",
    "fallback_hits",
    "fallback_misses",
    "l3_hits",
    "l3_misses",
    "errors",
)


def _rate(hits: int, misses: int) -> float | None:
    total = hits + misses
    return hits / total if total else None


class CacheStatistics:
    """Hit/miss/error counters, safe to bump from any task or thread.

    ``l1`` counts fast-tier lookups and ``fallback`` counts durable-tier
    lookups, so a request that misses the fast tier and hits the durable one
    is one ``l1`` miss and one ``fallback`` hit. Every L1 request ends as
    exactly one of ``l1_hits``, ``fallback_hits`` or ``fallback_misses``;
    ``combined`` is built from those final outcomes plus L3.

    Reads are snapshots; they need not be linearizable with increments.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(COUNTERS, 0)

    def increment(self, counter: str, amount: int = 1) -> None:
        if counter not in self._counts:
            raise KeyError(f"Unknown cache counter: {counter}")
        with self._lock:
            self._counts[counter] += amount

    def __getitem__(self, counter: str) -> int:
        return self._counts[counter]

    def reset(self) -> None:
        with self._lock:
            self._counts = dict.fromkeys(COUNTERS, 0)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            c = dict(self._counts)

        hits = c["l1_hits"] + c["fallback_hits"] + c["l3_hits"]
        misses = c["fallback_misses"] + c["l3_misses"]
        return {
            "l1": {
                "hits": c["l1_hits"],
                "misses": c["l1_misses"],
                "hit_rate": _rate(c["l1_hits"], c["l1_misses"]),
            },
            "fallback": {
                "hits": c["fallback_hits"],
                "misses": c["fallback_misses"],
                "hit_rate": _rate(c["fallback_hits"], c["fallback_misses"]),
            },
            "l3": {
                "hits": c["l3_hits"],
                "misses": c["l3_misses"],
                "hit_rate": _rate(c["l3_hits"], c["l3_misses"]),
            },
            "combined": {
                "hits": hits,
                "misses": misses,
                "hit_rate": _rate(hits, misses),
            },
            "errors": c["errors"],
        }
