from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from mot_bootstrap.training.modes import PRUNING_METHODS, TRAIN_SPLIT, VAL_SPLIT, TrainingParameters

logger = logging.getLogger(__name__)

TRAINING_SCRIPT = Path("scripts") / "main.py"
# Resolved on PATH, i.e. from whichever conda env is active.
DEFAULT_PYTHON = "python"


def build_training_command(params: TrainingParameters, python: str | None = None) -> list[str]:
    arch = params.reid_arch
    return [
        python or DEFAULT_PYTHON,
        str(TRAINING_SCRIPT),
        "--experiment_mode", "train",
        "--cuda",
        "--train_splits", TRAIN_SPLIT,
        "--val_splits", VAL_SPLIT,
        "--run_id", params.run_id,
        "--interpolate_motion",
        "--linear_center_only",
        "--det_file", params.det_file,
        "--data_path", str(params.data_path),
        "--reid_embeddings_dir", f"reid_{arch}",
        "--node_embeddings_dir", f"node_{arch}",
        "--zero_nodes",
        "--reid_arch", arch,
        "--edge_level_embed",
        "--save_cp",
        "--pruning_method", *PRUNING_METHODS,
    ]  # fmt: skip


def training_env(project_dir: Path, base: dict[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    existing = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = f"{project_dir}{os.pathsep}{existing}" if existing else str(project_dir)
    return env


def launch_training(params: TrainingParameters, project_dir: Path, python: str | None = None) -> int:
    """Run the trainer as one blocking subprocess and return its exit code."""
    cmd = build_training_command(params, python=python)
    logger.info("Launching: %s", " ".join(cmd))
    try:
        proc = subprocess.run(cmd, cwd=str(project_dir), env=training_env(project_dir))
    except FileNotFoundError:
        logger.error("Python interpreter not found: %s", cmd[0])
        return 127
    return proc.returncode
