from __future__ import annotations

import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path

from mot_bootstrap.errors import ExtractionError

logger = logging.getLogger(__name__)


def extraction_flag(archive: Path, target_dir: Path) -> Path:
    """Flag file present in ``target_dir`` while ``archive`` is being unpacked."""
    return target_dir / f".{archive.name}.extracting"


@dataclass(frozen=True)
class ZipExtractor:
    """Unpack a zip archive into a directory.

    The archive is left in place on failure so a later run can retry the
    extraction without downloading again. The flag from ``extraction_flag``
    is written first and removed only after every member is out, so a tree
    that looks complete but was cut short can still be told apart.
    """

    def extract(self, archive: Path, target_dir: Path) -> None:
        if not archive.is_file():
            raise ExtractionError(f"archive not found: {archive}")
        target_dir.mkdir(parents=True, exist_ok=True)
        flag = extraction_flag(archive, target_dir)
        flag.write_text(f"{archive}\n")
        logger.info("Extracting %s into %s", archive, target_dir)
        try:
            with zipfile.ZipFile(archive, "r") as zf:
                zf.extractall(target_dir)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, OSError) as exc:
            raise ExtractionError(f"failed to extract {archive}: {exc}") from exc
        flag.unlink()
        logger.info("Extraction complete")
