from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Protocol

import requests
from rich.progress import Progress, TaskID

from mot_bootstrap.errors import TransferError
from mot_bootstrap.pipeline.config import NetworkConfig, RetryConfig
from mot_bootstrap.provisioning.manifest import SourceKind
from mot_bootstrap.provisioning.markers import is_non_empty_file

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    def fetch(self, source_ref: str, destination: Path) -> bool:
        """Fetch into ``destination``; False when it was already present."""
        ...


class _TransientStatus(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


_RETRYABLE = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
    _TransientStatus,
)


def part_path(destination: Path) -> Path:
    return destination.with_name(destination.name + ".part")


def _check_status(resp: requests.Response, what: str) -> None:
    code = resp.status_code
    if code == 429 or code >= 500:
        raise _TransientStatus(code)
    if code < 200 or code >= 300:
        raise TransferError(f"{what}: HTTP {code}")


def _content_total(resp: requests.Response, offset: int) -> int | None:
    content_range = resp.headers.get("Content-Range")
    if content_range and "/" in content_range:
        total = content_range.rsplit("/", 1)[1]
        if total.isdigit():
            return int(total)
    length = resp.headers.get("Content-Length")
    if length and length.isdigit():
        return offset + int(length)
    return None


@dataclass
class _HttpFetcher:
    session: requests.Session
    network: NetworkConfig = field(default_factory=NetworkConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    progress: Progress | None = None
    sleep: Callable[[float], None] = time.sleep

    @property
    def _timeout(self) -> tuple[float, float | None]:
        return (self.network.connect_timeout_s, self.network.read_timeout_s)

    def _get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> requests.Response:
        merged = {"User-Agent": self.network.user_agent}
        merged.update(headers or {})
        return self.session.get(url, headers=merged, params=params, stream=True, timeout=self._timeout)

    def _with_retries(self, what: str, attempt: Callable[[], None]) -> None:
        attempts = max(1, self.retry.max_attempts)
        for n in range(attempts):
            try:
                attempt()
                return
            except _RETRYABLE as exc:
                if n >= attempts - 1:
                    raise TransferError(f"{what}: giving up after {attempts} attempts ({exc})") from exc
                wait_s = min(self.retry.backoff_base**n, self.retry.backoff_max)
                logger.warning("%s: %s, retrying in %.1fs", what, exc, wait_s)
                self.sleep(wait_s)
            except requests.RequestException as exc:
                raise TransferError(f"{what}: {exc}") from exc
            except OSError as exc:
                raise TransferError(f"{what}: {exc}") from exc

    def _stream(self, resp: requests.Response, target: Path, mode: str, offset: int, label: str) -> None:
        task: TaskID | None = None
        if self.progress is not None:
            task = self.progress.add_task(label, total=_content_total(resp, offset), completed=offset)
        try:
            with target.open(mode) as fh:
                for chunk in resp.iter_content(chunk_size=self.network.chunk_size):
                    if not chunk:
                        continue
                    fh.write(chunk)
                    if task is not None:
                        self.progress.advance(task, len(chunk))  # type: ignore[union-attr]
        finally:
            if task is not None:
                self.progress.remove_task(task)  # type: ignore[union-attr]

    @staticmethod
    def _publish(part: Path, destination: Path) -> None:
        if not is_non_empty_file(part):
            part.unlink(missing_ok=True)
            raise TransferError(f"{destination}: transfer produced no data")
        os.replace(part, destination)


@dataclass
class DirectUrlFetcher(_HttpFetcher):
    """One-shot GET; every attempt starts from byte zero."""

    def fetch(self, source_ref: str, destination: Path) -> bool:
        if is_non_empty_file(destination):
            return False
        destination.parent.mkdir(parents=True, exist_ok=True)
        part = part_path(destination)
        what = f"GET {source_ref}"

        def attempt() -> None:
            with self._get(source_ref) as resp:
                _check_status(resp, what)
                self._stream(resp, part, "wb", 0, destination.name)

        self._with_retries(what, attempt)
        self._publish(part, destination)
        logger.info("Downloaded %s", destination)
        return True


@dataclass
class ResumableArchiveFetcher(_HttpFetcher):
    """Continue an interrupted transfer from the length of ``<dest>.part``."""

    def fetch(self, source_ref: str, destination: Path) -> bool:
        if is_non_empty_file(destination):
            return False
        destination.parent.mkdir(parents=True, exist_ok=True)
        part = part_path(destination)
        what = f"GET {source_ref}"

        def attempt() -> None:
            offset = part.stat().st_size if part.exists() else 0
            headers = {"Range": f"bytes={offset}-"} if offset else {}
            with self._get(source_ref, headers=headers) as resp:
                if offset and resp.status_code == 416:
                    # Nothing left to send: the partial file is the whole file.
                    logger.info("%s already fully transferred (%d bytes)", part.name, offset)
                    return
                _check_status(resp, what)
                if offset and resp.status_code == 206:
                    logger.info("Resuming %s at byte %d", destination.name, offset)
                    self._stream(resp, part, "ab", offset, destination.name)
                else:
                    if offset:
                        logger.warning("Server ignored Range for %s; restarting", source_ref)
                    self._stream(resp, part, "wb", 0, destination.name)

        self._with_retries(what, attempt)
        self._publish(part, destination)
        logger.info("Downloaded %s (%d bytes)", destination, destination.stat().st_size)
        return True


_HIDDEN_INPUT = re.compile(
    r'<input[^>]*type="hidden"[^>]*name="([^"]+)"[^>]*value="([^"]*)"', re.IGNORECASE
)
_FORM_ACTION = re.compile(r'<form[^>]*id="download-form"[^>]*action="([^"]+)"', re.IGNORECASE)


def parse_confirm_form(html: str) -> tuple[str, dict[str, str]] | None:
    """Extract the large-file confirmation form from a Drive interstitial page."""
    action = _FORM_ACTION.search(html)
    if action is None:
        return None
    params = {name: value for name, value in _HIDDEN_INPUT.findall(html)}
    if not params:
        return None
    return action.group(1).replace("&amp;", "&"), params


def _is_html(resp: requests.Response) -> bool:
    return resp.headers.get("Content-Type", "").lower().startswith("text/html")


@dataclass
class KeyedIdFetcher(_HttpFetcher):
    """Resolve an opaque file id against the keyed download service."""

    def fetch(self, source_ref: str, destination: Path) -> bool:
        if is_non_empty_file(destination):
            return False
        destination.parent.mkdir(parents=True, exist_ok=True)
        part = part_path(destination)
        url = self.network.keyed_id_base_url + source_ref
        what = f"fetch id {source_ref} -> {destination.name}"

        def attempt() -> None:
            with self._get(url) as resp:
                _check_status(resp, what)
                if not _is_html(resp):
                    self._stream(resp, part, "wb", 0, destination.name)
                    return
                form = parse_confirm_form(resp.text)
            if form is None:
                raise TransferError(f"{what}: service returned a page instead of the file")
            action, params = form
            with self._get(action, params=params) as confirmed:
                _check_status(confirmed, what)
                if _is_html(confirmed):
                    raise TransferError(f"{what}: confirmation was not accepted")
                self._stream(confirmed, part, "wb", 0, destination.name)

        self._with_retries(what, attempt)
        self._publish(part, destination)
        logger.info("Downloaded %s", destination)
        return True


def build_fetchers(
    session: requests.Session,
    network: NetworkConfig,
    retry: RetryConfig,
    progress: Progress | None = None,
) -> Mapping[SourceKind, Fetcher]:
    kwargs = dict(session=session, network=network, retry=retry, progress=progress)
    return {
        SourceKind.DIRECT_URL: DirectUrlFetcher(**kwargs),
        SourceKind.RESUMABLE_ARCHIVE: ResumableArchiveFetcher(**kwargs),
        SourceKind.KEYED_ID: KeyedIdFetcher(**kwargs),
    }
