"""
Single owner of the live game state.

Every mutating operation runs inside ``GameStore.transaction()``: it works on a deep copy
and the store swaps that copy in only when the block exits normally. Raising inside the
block discards the copy, so a half-applied operation (credits debited but packet not
marked, say) can never become visible.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import broker_objects as G

logger = logging.getLogger(__name__)


class GameStore:
    def __init__(self, state: G._GameState):
        self._state = state
        self._working: Optional[G._GameState] = None

    @property
    def state(self) -> G._GameState:
        """Last committed state. Treat as read-only; mutate through transaction()."""
        return self._state

    @property
    def in_transaction(self) -> bool:
        return self._working is not None

    @contextmanager
    def transaction(self, reason: str = "") -> Iterator[G._GameState]:
        """
        Yield a working copy of the state and commit it on normal exit.

        Nested calls join the outer transaction: they get the same working copy
        and only the outermost block commits.
        """
        if self._working is not None:
            yield self._working
            return

        self._working = self._state.model_copy(deep=True)
        try:
            yield self._working
        except BaseException:
            logger.debug("Rolled back transaction %s", reason or "<unnamed>")
            raise
        else:
            self._state = self._working
            logger.debug("Committed transaction %s", reason or "<unnamed>")
        finally:
            self._working = None

    def replace(self, state: G._GameState) -> None:
        """Swap in a whole new state (e.g. after loading a save)."""
        if self._working is not None:
            raise RuntimeError("cannot replace state inside a transaction")
        self._state = state
