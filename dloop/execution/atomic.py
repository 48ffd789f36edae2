"""Atomic scope: all-or-nothing execution over in-memory participants.

A Transaction snapshots the state of every participant on entry and restores
it if the body raises, so a failed vault operation leaves token balances, the
venue position, lender inventory and vault bookkeeping exactly as they were.

Snapshots copy state containers (dicts, lists, sets, tuples) recursively but
keep every other value by reference. Collaborator objects held as attributes
therefore keep their identity across a rollback.
"""

import logging
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


def _copy_state(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _copy_state(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_state(v) for v in value]
    if isinstance(value, set):
        return {_copy_state(v) for v in value}
    if isinstance(value, tuple):
        return tuple(_copy_state(v) for v in value)
    return value


class Transaction:
    """Context manager that rolls participants back when the body raises.

    Participants may be added mid-flight with track(); each is snapshotted the
    first time it is seen.

    Attributes:
        name: Label used in log messages
        committed: True once the body completed without raising
    """

    def __init__(self, participants: Iterable[object], name: Optional[str] = None):
        self.name = name or "tx"
        self.committed = False
        self._participants: Dict[int, object] = {}
        self._snapshots: Dict[int, Dict[str, Any]] = {}
        self._pending = list(participants)

    def __enter__(self) -> "Transaction":
        for obj in self._pending:
            self.track(obj)
        self._pending = []
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.rollback()
            logger.warning(f"{self.name} rolled back: {exc_type.__name__}: {exc}")
            return False
        self.committed = True
        return False

    def track(self, obj: object) -> None:
        key = id(obj)
        if key in self._snapshots:
            return
        self._participants[key] = obj
        self._snapshots[key] = _copy_state(vars(obj))

    def rollback(self) -> None:
        for key, obj in self._participants.items():
            state = vars(obj)
            state.clear()
            state.update(_copy_state(self._snapshots[key]))
