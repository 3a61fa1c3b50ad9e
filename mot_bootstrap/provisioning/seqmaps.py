from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Sequence

from mot_bootstrap.provisioning.manifest import SeqmapSpec

logger = logging.getLogger(__name__)

SEQMAP_HEADER = "name"


def write_seqmap(path: Path, members: Sequence[str]) -> bool:
    """Write a TrackEval seqmap unless ``path`` already exists.

    Returns True when the file was written. An existing file is never read
    or modified, so hand edits survive re-runs.
    """
    if path.exists():
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    lines = [SEQMAP_HEADER, *members]
    tmp.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    os.replace(tmp, path)
    logger.info("Created %s", path)
    return True


def write_seqmaps(seqmap_dir: Path, specs: Iterable[SeqmapSpec]) -> list[Path]:
    written: list[Path] = []
    for spec in specs:
        target = seqmap_dir / spec.filename
        if write_seqmap(target, spec.members):
            written.append(target)
    return written
