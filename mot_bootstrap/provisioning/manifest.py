from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping, Sequence

from mot_bootstrap.errors import ManifestError


class SourceKind(str, Enum):
    DIRECT_URL = "direct_url"
    RESUMABLE_ARCHIVE = "resumable_archive"
    KEYED_ID = "keyed_id"


@dataclass(frozen=True)
class RemoteArtifact:
    logical_key: str
    destination: Path
    source_kind: SourceKind
    source_ref: str  # URL or opaque service id


@dataclass(frozen=True)
class ArtifactManifest:
    """Ordered mapping from item key to the artifacts fetched for it."""

    name: str
    entries: tuple[tuple[str, tuple[RemoteArtifact, ...]], ...]

    def __post_init__(self) -> None:
        seen: dict[Path, str] = {}
        for key, artifacts in self.entries:
            for art in artifacts:
                if art.destination in seen:
                    raise ManifestError(
                        f"{self.name}: destination {art.destination} used by both "
                        f"{seen[art.destination]} and {art.logical_key}"
                    )
                seen[art.destination] = art.logical_key

    def artifacts(self) -> Iterator[RemoteArtifact]:
        for _, arts in self.entries:
            yield from arts


# Detection files, one Drive id per sequence and detector.
BYTE_IDS: Mapping[str, str] = MappingProxyType(
    {
        "MOT20-01": "1DQY2ChghNJS1ASByxmaMAW_axXen1kzf",
        "MOT20-02": "1N-A98wr9CTzShbcoyeoGU-wmywBYqs3S",
        "MOT20-03": "1wZ5ZF-vmJPH3x6UGToSsqziaPK55Au9a",
        "MOT20-04": "1V9CTgB9qj3wDwwo9pz76p5COoR55dWAw",
        "MOT20-05": "1MggUl4lb4_Yh0IrteTvB6Die9l9AKWrK",
        "MOT20-06": "1Sa74micmrNWxVj1KmRt6xEOnSWejaqHQ",
        "MOT20-07": "1PSo3TIjB01oTHmlozM-6-zF86xGKf0IN",
        "MOT20-08": "1kUaVZSEcw64ekXDczncu-fXBU5HO_dO-",
    }
)

APLIFT_IDS: Mapping[str, str] = MappingProxyType(
    {
        "MOT20-01": "1TCne7k_8ER39QhOn-rSxbcQ1jwl_zXY5",
        "MOT20-02": "1p3ptWpET7iFY4EtmIZB884Cekd30oZfA",
        "MOT20-03": "1anjXEhIk2DvlkqZxCIq9YMHL-bthVmWS",
        "MOT20-04": "1IQO_sBTBehJupVImyrnV1zrcNpDWEMqr",
        "MOT20-05": "1kSg3TBHDuAt2tK5ZRKZM8LFix5eADxfz",
        "MOT20-06": "1A_pYFZIXMMtjHZ0lKDcbxFS8gODkWscj",
        "MOT20-07": "17R1af-URPhIg9v3wGlpGb1hYX09sKU4M",
        "MOT20-08": "1wscUJtmwv9n_T02pMI_nF8dB9FP0pXZm",
    }
)

# file name -> id; byte065 is the ByteTrack detector at 0.65 threshold.
DETECTION_CLASSES: Mapping[str, Mapping[str, str]] = MappingProxyType(
    {"byte065": BYTE_IDS, "aplift": APLIFT_IDS}
)

REID_WEIGHT_IDS: Mapping[str, str] = MappingProxyType(
    {"msmt_bot_R50-ibn.pth": "1MovixfOLwnnXet05JLIGPy-Ag67fdW-2"}
)

PRETRAINED_MODEL_IDS: Mapping[str, str] = MappingProxyType(
    {
        "mot20private.pth": "1LAx7eWPh6fLWBpJFJwGxOxVnPvR25Zb5",
        "mot20public.pth": "112m_lUCkhDi2Wz9_-NRC2a4AnNZLjN5r",
        "mot17private.pth": "1GC8gJSotlBEb2BfkI274uNgUoFHhK-5A",
        "mot17public.pth": "1a5V4YlWm3KXABb3KPiBD36XRObB1Uqpc",
        "model_configs.txt": "1nHcZ0Ix-JExPGO8CSMOIJoVftMr8bWqZ",
    }
)

TRAIN_SEQUENCES: tuple[str, ...] = ("MOT20-01", "MOT20-02", "MOT20-03", "MOT20-05")
TEST_SEQUENCES: tuple[str, ...] = ("MOT20-04", "MOT20-06", "MOT20-07", "MOT20-08")


@dataclass(frozen=True)
class SeqmapSpec:
    name: str
    members: tuple[str, ...]

    @property
    def filename(self) -> str:
        return f"{self.name}.txt"


SEQMAPS: tuple[SeqmapSpec, ...] = (
    SeqmapSpec("mot20-train-all", TRAIN_SEQUENCES),
    SeqmapSpec("mot20-test-all", TEST_SEQUENCES),
    SeqmapSpec("mot20-val-split1", ("MOT20-05",)),
    SeqmapSpec("mot20-val-split2", ("MOT20-03",)),
    SeqmapSpec("mot20-val-split3", ("MOT20-02",)),
    SeqmapSpec("mot20-val-split4", ("MOT20-01",)),
)


def detection_manifest(
    name: str,
    split_dir: Path,
    sequences: Sequence[str],
    classes: Mapping[str, Mapping[str, str]] = DETECTION_CLASSES,
) -> ArtifactManifest:
    """Per-sequence detection files at ``<split_dir>/<seq>/det/<class>.txt``."""
    entries = []
    for seq in sequences:
        arts = tuple(
            RemoteArtifact(
                logical_key=f"{seq}/{cls}",
                destination=split_dir / seq / "det" / f"{cls}.txt",
                source_kind=SourceKind.KEYED_ID,
                source_ref=ids[seq],
            )
            for cls, ids in classes.items()
        )
        entries.append((seq, arts))
    return ArtifactManifest(name=name, entries=tuple(entries))


def keyed_file_manifest(name: str, target_dir: Path, ids: Mapping[str, str]) -> ArtifactManifest:
    entries = tuple(
        (
            fname,
            (
                RemoteArtifact(
                    logical_key=fname,
                    destination=target_dir / fname,
                    source_kind=SourceKind.KEYED_ID,
                    source_ref=file_id,
                ),
            ),
        )
        for fname, file_id in ids.items()
    )
    return ArtifactManifest(name=name, entries=entries)


def archive_artifact(url: str, destination: Path) -> RemoteArtifact:
    return RemoteArtifact(
        logical_key=destination.name,
        destination=destination,
        source_kind=SourceKind.RESUMABLE_ARCHIVE,
        source_ref=url,
    )
