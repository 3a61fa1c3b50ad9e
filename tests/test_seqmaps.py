from __future__ import annotations

from pathlib import Path

from mot_bootstrap.provisioning.manifest import SEQMAPS
from mot_bootstrap.provisioning.seqmaps import write_seqmap, write_seqmaps


def test_write_seqmap_writes_header_then_members_in_order(tmp_path: Path) -> None:
    target = tmp_path / "mot20-train-all.txt"

    assert write_seqmap(target, ["MOT20-01", "MOT20-02", "MOT20-03", "MOT20-05"])

    assert target.read_text().splitlines() == ["name", "MOT20-01", "MOT20-02", "MOT20-03", "MOT20-05"]
    assert not (tmp_path / "mot20-train-all.txt.tmp").exists()


def test_write_seqmap_never_clobbers_existing_file(tmp_path: Path) -> None:
    target = tmp_path / "mot20-train-all.txt"
    write_seqmap(target, ["MOT20-01", "MOT20-02"])
    target.write_text("name\nMOT20-02\n")  # hand edit

    assert not write_seqmap(target, ["MOT20-01", "MOT20-02"])
    assert target.read_text() == "name\nMOT20-02\n"


def test_write_seqmaps_creates_all_six_files_once(tmp_path: Path) -> None:
    seqmap_dir = tmp_path / "MOT20" / "seqmaps"

    written = write_seqmaps(seqmap_dir, SEQMAPS)
    assert sorted(p.name for p in written) == sorted(
        [
            "mot20-train-all.txt",
            "mot20-test-all.txt",
            "mot20-val-split1.txt",
            "mot20-val-split2.txt",
            "mot20-val-split3.txt",
            "mot20-val-split4.txt",
        ]
    )
    assert (seqmap_dir / "mot20-val-split1.txt").read_text() == "name\nMOT20-05\n"
    assert (seqmap_dir / "mot20-test-all.txt").read_text().splitlines()[1:] == [
        "MOT20-04",
        "MOT20-06",
        "MOT20-07",
        "MOT20-08",
    ]

    assert write_seqmaps(seqmap_dir, SEQMAPS) == []
