from __future__ import annotations

import json
import os
import time
from collections.abc import Callable
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

RecordsUpdater = Callable[[dict[str, Any]], None]


class TimeturnStateError(RuntimeError):
    """Raised when shared-state operations fail."""


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


class StateStore:
    """Conversation records, per-user task forests and CLI metrics under ``.timeturn/state/``.

    Each namespace is one JSON file holding ``{"schema_version", "updated_at",
    "data"}`` where ``data`` maps a key (conversation id, user id, metric name)
    to its value. Every write is a read-modify-write taken under a lock file and
    committed with an atomic rename.
    """

    SCHEMA_VERSION = 1

    def __init__(self, root: Path, *, lock_timeout_seconds: float = 3.0) -> None:
        self.root = root.resolve()
        self.local_state_dir = self.root / ".timeturn" / "state"
        self.local_state_dir.mkdir(parents=True, exist_ok=True)
        self.lock_file = self.local_state_dir / ".lock"
        self.lock_timeout_seconds = lock_timeout_seconds

    @contextmanager
    def _locked(self):
        deadline = time.monotonic() + self.lock_timeout_seconds
        while True:
            try:
                fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError as exc:
                if time.monotonic() > deadline:
                    raise TimeturnStateError("Timed out waiting for state lock.") from exc
                time.sleep(0.02)
                continue
            os.write(fd, str(os.getpid()).encode("utf-8"))
            os.close(fd)
            break
        try:
            yield
        finally:
            self.lock_file.unlink(missing_ok=True)

    def _records(self, namespace: str) -> dict[str, Any]:
        path = self.local_state_dir / f"{namespace}.json"
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError):
            return {}
        # Files written before the envelope existed hold the records directly.
        if isinstance(raw, dict) and "schema_version" in raw and "data" in raw:
            raw = raw["data"]
        return raw if isinstance(raw, dict) else {}

    def _update_records(self, namespace: str, updater: RecordsUpdater) -> dict[str, Any]:
        with self._locked():
            records = self._records(namespace)
            updater(records)
            envelope = {
                "schema_version": self.SCHEMA_VERSION,
                "updated_at": _utcnow_iso(),
                "data": records,
            }
            target = self.local_state_dir / f"{namespace}.json"
            temp_path = target.with_suffix(".json.tmp")
            temp_path.write_text(
                json.dumps(envelope, ensure_ascii=False, separators=(",", ":")), encoding="utf-8"
            )
            os.replace(temp_path, target)
        return records

    def get_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        record = self._records("conversations").get(conversation_id)
        return record if isinstance(record, dict) else None

    def set_conversation(self, conversation_id: str, record: dict[str, Any]) -> None:
        stored = dict(record)
        stored["updatedAt"] = _utcnow_iso()
        self._update_records(
            "conversations", lambda records: records.update({conversation_id: stored})
        )

    def delete_conversation(self, conversation_id: str) -> bool:
        removed: list[Any] = []
        self._update_records(
            "conversations",
            lambda records: removed.append(records.pop(conversation_id, None)),
        )
        return removed[0] is not None

    def list_conversations(self) -> list[str]:
        return sorted(self._records("conversations"))

    def get_tree(self, user_id: str) -> list[dict[str, Any]]:
        forest = self._records("trees").get(user_id)
        return forest if isinstance(forest, list) else []

    def set_tree(self, user_id: str, forest: list[dict[str, Any]]) -> None:
        self._update_records("trees", lambda records: records.update({user_id: forest}))

    def get_metrics(self) -> dict[str, Any]:
        return self._records("metrics")

    def update_metrics(self, updater: RecordsUpdater) -> dict[str, Any]:
        """Mutate the metrics mapping in place while the state lock is held."""
        return self._update_records("metrics", updater)
