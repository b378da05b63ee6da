"""
Engine-wide critical section.

All state-mutating entry points of one engine share a single
``ExclusiveSection``. Calls from different threads are serialized; a call
that re-enters the section from the thread already holding it is rejected
with ``ReentrancyError`` before it can touch any state.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .exceptions import ReentrancyError


class ExclusiveSection:
    """Non-reentrant mutual exclusion guard scoped to an engine instance."""

    def __init__(self, name: str = "engine"):
        self.name = name
        self._lock = threading.Lock()
        self._owner: Optional[int] = None
        self._operation: Optional[str] = None

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        me = threading.get_ident()
        if self._owner == me:
            raise ReentrancyError(
                f"{operation} re-entered {self.name} while {self._operation} is in progress"
            )
        with self._lock:
            self._owner = me
            self._operation = operation
            try:
                yield
            finally:
                self._owner = None
                self._operation = None

    @property
    def busy(self) -> bool:
        return self._owner is not None

    @property
    def current_operation(self) -> Optional[str]:
        return self._operation
