from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True))
    os.replace(tmp, path)


@dataclass
class StepLedger:
    """Side file recording which provisioning steps completed, and when.

    The filesystem probes stay the source of truth for skipping; the ledger
    only answers "what happened on previous runs" for ``status`` and logs.
    Writes are atomic so an interrupted run never corrupts it.
    """

    path: Path
    state: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "StepLedger":
        raw: dict[str, Any] = {}
        if path.exists():
            try:
                raw = json.loads(path.read_text())
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Ignoring unreadable ledger %s: %s", path, exc)
                raw = {}
        return cls(path=path, state=raw)

    def save(self) -> None:
        self.state["updated_at"] = time.time()
        _atomic_write_json(self.path, self.state)

    def is_step_recorded(self, step: str) -> bool:
        return bool(self.state.get("steps", {}).get(step, {}).get("done", False))

    def record_step(self, step: str, status: str, meta: dict[str, Any] | None = None) -> None:
        steps = self.state.setdefault("steps", {})
        entry = steps.setdefault(step, {})
        entry["done"] = True
        entry["last_status"] = status
        entry["recorded_at"] = time.time()
        if meta:
            entry.setdefault("meta", {}).update(meta)
        self.save()

    def record_failure(self, step: str, error: str) -> None:
        steps = self.state.setdefault("steps", {})
        entry = steps.setdefault(step, {})
        entry["done"] = False
        entry["last_status"] = "failed"
        entry["error"] = error
        entry["recorded_at"] = time.time()
        self.save()

    def last_status(self, step: str) -> str | None:
        return self.state.get("steps", {}).get(step, {}).get("last_status")
