from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

WriteFn = Callable[[], None]


class DebouncedWriter:
    """Coalesces writes per key; only the last scheduled write for a key runs.

    Each scheduled write must carry the full state it persists. Failures are
    reported through ``error_hook`` when one is set.
    """

    def __init__(
        self,
        delay: float = 0.5,
        *,
        error_hook: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.delay = delay
        self.error_hook = error_hook
        self._lock = threading.Lock()
        self._pending: dict[str, tuple[threading.Timer, WriteFn]] = {}

    def schedule(self, key: str, write: WriteFn) -> None:
        with self._lock:
            existing = self._pending.pop(key, None)
            if existing is not None:
                existing[0].cancel()
            if self.delay <= 0:
                timer = None
            else:
                timer = threading.Timer(self.delay, self._fire, args=(key,))
                timer.daemon = True
                self._pending[key] = (timer, write)
        if timer is None:
            self._run(key, write)
        else:
            timer.start()

    def _fire(self, key: str) -> None:
        with self._lock:
            entry = self._pending.pop(key, None)
        if entry is not None:
            self._run(key, entry[1])

    def _run(self, key: str, write: WriteFn) -> None:
        try:
            write()
        except Exception as exc:
            if self.error_hook is None:
                raise
            self.error_hook({"event": "persist_failed", "key": key, "error": str(exc)})

    @property
    def pending_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._pending)

    def flush(self) -> None:
        with self._lock:
            entries = list(self._pending.items())
            self._pending.clear()
        for key, (timer, write) in entries:
            timer.cancel()
            self._run(key, write)
