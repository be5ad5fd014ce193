"""Shallow shared-state diffing for STATE_UPDATE events.

Top-level fields are compared by content fingerprint (xxhash over the
pickled value, or over repr() for values that cannot be pickled), so
mutable containers that were changed in place are detected as updated.
"""

from __future__ import annotations

import copy
import pickle
from collections.abc import Mapping
from typing import Any

import xxhash


def fingerprint(value: Any) -> int:
    """64-bit content fingerprint of a value."""
    try:
        payload = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
    except Exception:
        payload = repr(value).encode("utf-8", errors="replace")
    return xxhash.xxh64(payload).intdigest()


def top_level_fields(state: Any) -> dict[Any, Any]:
    """Top-level fields of a mapping or attribute-bearing object.

    Mapping keys are kept as-is, so 1 and "1" stay distinct fields.

    Anything else (None, scalars, sequences) has no fields to diff.
    """
    if isinstance(state, Mapping):
        return dict(state.items())
    if hasattr(state, "__dict__"):
        return dict(vars(state))
    return {}


class StateSnapshot:
    """Fingerprints and copies of a shared state's top-level fields."""

    def __init__(self, state: Any):
        self._fields: dict[Any, tuple[int, Any]] = {}
        for name, value in top_level_fields(state).items():
            try:
                kept = copy.deepcopy(value)
            except Exception:
                kept = value
            self._fields[name] = (fingerprint(value), kept)

    def changes(self, state: Any) -> dict[Any, tuple[Any, Any]]:
        """Fields that differ in `state`, as name → (old value, new value).

        Removed fields report a new value of None.
        """
        current = top_level_fields(state)
        changed: dict[Any, tuple[Any, Any]] = {}

        for name, value in current.items():
            before = self._fields.get(name)
            if before is None:
                changed[name] = (None, value)
            elif before[0] != fingerprint(value):
                changed[name] = (before[1], value)

        for name, (_, old_value) in self._fields.items():
            if name not in current:
                changed[name] = (old_value, None)

        return changed
