from collections.abc import Iterator
from contextlib import contextmanager
from threading import Condition


class SessionGuard:
    """Per-session gate: chunk writes share it, a merge holds it alone.

    A merge waits for in-flight chunk writes on its session to drain and
    blocks new ones until it finishes. Different sessions never wait on each
    other beyond the short bookkeeping section.
    """

    def __init__(self) -> None:
        self._cond = Condition()
        self._writers: dict[str, int] = {}
        self._merging: set[str] = set()

    @contextmanager
    def chunk_write(self, session_id: str) -> Iterator[None]:
        with self._cond:
            while session_id in self._merging:
                self._cond.wait()
            self._writers[session_id] = self._writers.get(session_id, 0) + 1
        try:
            yield
        finally:
            with self._cond:
                next_value = self._writers.get(session_id, 0) - 1
                if next_value <= 0:
                    self._writers.pop(session_id, None)
                else:
                    self._writers[session_id] = next_value
                self._cond.notify_all()

    @contextmanager
    def merge(self, session_id: str) -> Iterator[None]:
        with self._cond:
            while session_id in self._merging or self._writers.get(session_id, 0) > 0:
                self._cond.wait()
            self._merging.add(session_id)
        try:
            yield
        finally:
            with self._cond:
                self._merging.discard(session_id)
                self._cond.notify_all()

    def snapshot(self, session_id: str) -> tuple[int, bool]:
        with self._cond:
            return self._writers.get(session_id, 0), session_id in self._merging
