from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from mot_bootstrap.errors import ValidationError

DEFAULT_MODE = "private"
REID_ARCH = "fastreid_msmt_BOT_R50_ibn"
TRAIN_SPLIT = "mot20-train-all"
VAL_SPLIT = "mot20-val-split1"
PRUNING_METHODS: tuple[str, ...] = ("geometry",) + ("motion_01",) * 8


@dataclass(frozen=True)
class ModeResolution:
    det_file: str
    run_id: str


# public: APLift detections; private: ByteTrack at 0.65.
MODES: Mapping[str, ModeResolution] = MappingProxyType(
    {
        "public": ModeResolution(det_file="aplift", run_id="mot20_public_train"),
        "private": ModeResolution(det_file="byte065", run_id="mot20_private_train"),
    }
)


def resolve_mode(mode: str) -> ModeResolution:
    try:
        return MODES[mode]
    except KeyError:
        allowed = " or ".join(f"'{m}'" for m in MODES)
        raise ValidationError(f"MODE must be {allowed}, got: {mode!r}") from None


@dataclass(frozen=True)
class TrainingParameters:
    mode: str
    det_file: str
    run_id: str
    data_path: Path
    reid_arch: str = REID_ARCH

    @classmethod
    def for_mode(cls, mode: str, data_path: Path) -> "TrainingParameters":
        res = resolve_mode(mode)
        return cls(mode=mode, det_file=res.det_file, run_id=res.run_id, data_path=data_path)
