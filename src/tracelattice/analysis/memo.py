"""Identity-keyed memoization for normalized traces and step diffs.

Entries are keyed by `id(trace)` and keep a strong reference to the keyed
trace, so a recycled id never aliases a different trace.
"""

from __future__ import annotations

import logging
import os
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tracelattice.analysis.normalizer import NormalizePolicy, normalize
from tracelattice.analysis.step_diff import StepDiff, step_diff_at
from tracelattice.model import Trace

logger = logging.getLogger(__name__)

ValueT = TypeVar("ValueT")

_CACHE_SIZE_ENV = "TRACELATTICE_CACHE_MAX_ENTRIES"
_DEFAULT_CACHE_SIZE = 256

CacheKey = tuple[str, int, object]


def _env_max_entries() -> int:
    raw = os.environ.get(_CACHE_SIZE_ENV, "").strip()
    if not raw:
        return _DEFAULT_CACHE_SIZE
    try:
        value = int(raw)
    except ValueError:
        return _DEFAULT_CACHE_SIZE
    return value if value > 0 else _DEFAULT_CACHE_SIZE


@dataclass(frozen=True)
class _CacheEntry:
    anchor: object
    value: object


@dataclass
class AnalysisCache:
    max_entries: int = field(default_factory=_env_max_entries)
    _values: OrderedDict[CacheKey, _CacheEntry] = field(default_factory=OrderedDict)
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    def derive(
        self,
        *,
        op: str,
        anchor: object,
        param: object,
        compute_fn: Callable[[], ValueT],
    ) -> ValueT:
        key: CacheKey = (op, id(anchor), param)
        cached = self._values.get(key)
        if cached is not None and cached.anchor is anchor:
            self.hits += 1
            self._values.move_to_end(key)
            logger.debug("cache hit %s param=%r", op, param)
            return cached.value  # type: ignore[return-value]
        self.misses += 1
        logger.debug("cache miss %s param=%r", op, param)
        value = compute_fn()
        self._values[key] = _CacheEntry(anchor=anchor, value=value)
        self._values.move_to_end(key)
        self._evict_if_needed()
        return value

    def normalized(self, trace: Trace, policy: NormalizePolicy | None = None) -> Trace:
        effective = policy or NormalizePolicy()
        return self.derive(
            op="normalize",
            anchor=trace,
            param=effective,
            compute_fn=lambda: normalize(trace, effective),
        )

    def step_diff(self, trace: Trace, index: int) -> StepDiff | None:
        return self.derive(
            op="step_diff",
            anchor=trace,
            param=index,
            compute_fn=lambda: step_diff_at(index, trace.steps),
        )

    def clear(self) -> None:
        self._values.clear()

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._values),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }

    def _evict_if_needed(self) -> None:
        while len(self._values) > self.max_entries:
            self._values.popitem(last=False)
            self.evictions += 1
