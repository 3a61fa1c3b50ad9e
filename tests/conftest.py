from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator


@dataclass
class FakeResponse:
    status_code: int = 200
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    fail_after_chunks: int | None = None
    error: Exception | None = None

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for n, start in enumerate(range(0, len(self.body), chunk_size)):
            if self.fail_after_chunks is not None and n >= self.fail_after_chunks:
                assert self.error is not None
                raise self.error
            yield self.body[start : start + chunk_size]

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")


@dataclass
class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    responses: list[Any] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)

    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        stream: bool = False,
        timeout: object = None,
    ) -> FakeResponse:
        self.calls.append({"url": url, "headers": dict(headers or {}), "params": params})
        if not self.responses:
            raise AssertionError(f"unexpected request to {url}")
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def snapshot_tree(root: Path) -> dict[str, bytes]:
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }
