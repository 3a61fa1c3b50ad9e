from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Mapping

from mot_bootstrap.adapters.http.fetchers import Fetcher
from mot_bootstrap.provisioning.manifest import ArtifactManifest, RemoteArtifact, SourceKind
from mot_bootstrap.provisioning.markers import FileNonEmptyMarker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchSummary:
    fetched: int
    skipped: int


def manifest_complete(manifest: ArtifactManifest) -> bool:
    return all(FileNonEmptyMarker(a.destination).exists() for a in manifest.artifacts())


def _fetch_one(art: RemoteArtifact, fetchers: Mapping[SourceKind, Fetcher]) -> bool:
    try:
        fetcher = fetchers[art.source_kind]
    except KeyError:
        raise ValueError(f"No fetcher registered for {art.source_kind.value}") from None
    art.destination.parent.mkdir(parents=True, exist_ok=True)
    return fetcher.fetch(art.source_ref, art.destination)


def fetch_manifest(
    manifest: ArtifactManifest,
    fetchers: Mapping[SourceKind, Fetcher],
    *,
    max_workers: int = 1,
) -> FetchSummary:
    """Fetch every not-yet-present artifact of ``manifest``.

    Destinations are disjoint, so items may run in parallel. The first
    failure cancels work that has not started and is re-raised.
    """
    pending: list[RemoteArtifact] = []
    skipped = 0
    for art in manifest.artifacts():
        if FileNonEmptyMarker(art.destination).exists():
            logger.info("%s already present, skipping", art.destination)
            skipped += 1
        else:
            pending.append(art)

    if not pending:
        return FetchSummary(fetched=0, skipped=skipped)

    fetched = 0
    if max_workers <= 1 or len(pending) == 1:
        for art in pending:
            if _fetch_one(art, fetchers):
                fetched += 1
            else:
                skipped += 1
        return FetchSummary(fetched=fetched, skipped=skipped)

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=manifest.name) as ex:
        futs = [ex.submit(_fetch_one, art, fetchers) for art in pending]
        done, not_done = wait(futs, return_when=FIRST_EXCEPTION)
        for fut in not_done:
            fut.cancel()
        # Surface the first failure in manifest order.
        for fut in futs:
            if fut in done and fut.exception() is not None:
                raise fut.exception()  # type: ignore[misc]
        for fut in futs:
            if fut.result():
                fetched += 1
            else:
                skipped += 1
    return FetchSummary(fetched=fetched, skipped=skipped)
