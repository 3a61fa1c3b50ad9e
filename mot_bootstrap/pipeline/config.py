from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

CONFIG_FILENAME = "bootstrap_config.toml"


def _expand(path: str) -> Path:
    return Path(os.path.expanduser(path)).resolve()


def _read_toml(path: Path) -> dict[str, Any]:
    """Read TOML into a dict, supporting Python 3.10+.

    Uses tomllib when available, falls back to tomli.
    """
    data = path.read_bytes()
    try:
        import tomllib  # type: ignore[attr-defined]

        return tomllib.loads(data.decode("utf-8"))
    except ModuleNotFoundError:
        import tomli  # type: ignore[import-not-found]

        return tomli.loads(data.decode("utf-8"))


def _default_project_dir() -> str:
    return str(Path.cwd())


class PathsConfig(BaseModel):
    """Where things live on the machine being provisioned."""

    data_path: str = Field(default="/workspace/data", description="Dataset root; MOT20 goes under it.")
    project_dir: str = Field(
        default_factory=_default_project_dir,
        description="Checkout of the training code (environment.yml, scripts/main.py).",
    )
    conda_install_dir: str = Field(default="/opt/miniconda3")
    shell_profile: str = Field(default="~/.bashrc")
    archive_cache_dir: str = Field(default="/tmp", description="Where MOT20.zip is downloaded.")
    logs_dir: str = Field(default="logs", description="Relative to project_dir unless absolute.")
    ledger_file: str = Field(default=".bootstrap_state.json", description="Relative to project_dir.")


class CondaConfig(BaseModel):
    env_name: str = Field(default="SUSHI")
    env_file: str = Field(default="environment.yml", description="Relative to project_dir.")
    tos_channels: list[str] = Field(
        default_factory=lambda: [
            "https://repo.anaconda.com/pkgs/main",
            "https://repo.anaconda.com/pkgs/r",
        ]
    )
    # libstdcxx-ng: the prebuilt lapsolver wheel needs GLIBCXX_3.4.29.
    extra_packages: list[str] = Field(default_factory=lambda: ["libstdcxx-ng"])
    extra_channel: str = Field(default="conda-forge")


class FastReidConfig(BaseModel):
    repo_url: str = Field(default="https://github.com/JDAI-CV/fast-reid.git")
    commit: str = Field(default="afe432b8c0ecd309db7921b7292b2c69813d0991")
    dir_name: str = Field(default="fast-reid")
    requirements: str = Field(default="docs/requirements.txt")
    models_dir: str = Field(default="fastreid-models")


class NetworkConfig(BaseModel):
    connect_timeout_s: float = Field(default=30.0)
    read_timeout_s: float | None = Field(default=None, description="None: no limit on slow transfers.")
    chunk_size: int = Field(default=1024 * 1024)
    fetch_workers: int = Field(default=4, description="Parallel per-sequence downloads.")
    keyed_id_base_url: str = Field(
        default="https://drive.usercontent.google.com/download?export=download&authuser=0&id="
    )
    mot20_url: str = Field(default="https://motchallenge.net/data/MOT20.zip")
    miniconda_url: str = Field(
        default="https://repo.anaconda.com/miniconda/Miniconda3-latest-Linux-x86_64.sh"
    )
    user_agent: str = Field(default="mot-bootstrap")


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=4)
    backoff_base: float = Field(default=2.0)
    backoff_max: float = Field(default=60.0)


class BootstrapConfig(BaseModel):
    paths: PathsConfig = Field(default_factory=PathsConfig)
    conda: CondaConfig = Field(default_factory=CondaConfig)
    fastreid: FastReidConfig = Field(default_factory=FastReidConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @classmethod
    def load(cls, path: Path) -> "BootstrapConfig":
        raw = _read_toml(path)
        return cls.model_validate(raw)

    @classmethod
    def discover(cls, project_dir: Path, data_path: str | None = None) -> "BootstrapConfig":
        """Load ``<project_dir>/bootstrap_config.toml`` if present, else defaults.

        ``data_path`` (the positional CLI argument) wins over the file.
        """
        candidate = project_dir / CONFIG_FILENAME
        cfg = cls.load(candidate) if candidate.exists() else cls()
        if "project_dir" not in cfg.paths.model_fields_set:
            cfg.paths.project_dir = str(project_dir)
        if data_path:
            cfg.paths.data_path = data_path
        return cfg

    def resolve(self) -> "ResolvedPaths":
        project = _expand(self.paths.project_dir)
        data = _expand(self.paths.data_path)
        mot20 = data / "MOT20"
        models = project / self.fastreid.models_dir

        def _under_project(p: str) -> Path:
            path = Path(os.path.expanduser(p))
            return path if path.is_absolute() else project / path

        return ResolvedPaths(
            project_dir=project,
            data_path=data,
            mot20_dir=mot20,
            train_dir=mot20 / "train",
            test_dir=mot20 / "test",
            seqmaps_dir=mot20 / "seqmaps",
            archive_path=_expand(self.paths.archive_cache_dir) / "MOT20.zip",
            conda_install_dir=_expand(self.paths.conda_install_dir),
            shell_profile=_expand(self.paths.shell_profile),
            env_file=_under_project(self.conda.env_file),
            fastreid_dir=project / self.fastreid.dir_name,
            reid_weights_dir=models / "model_weights",
            pretrained_models_dir=models / "pretrained_models",
            logs_dir=_under_project(self.paths.logs_dir),
            ledger_path=_under_project(self.paths.ledger_file),
        )


class ResolvedPaths(BaseModel):
    project_dir: Path
    data_path: Path
    mot20_dir: Path
    train_dir: Path
    test_dir: Path
    seqmaps_dir: Path
    archive_path: Path
    conda_install_dir: Path
    shell_profile: Path
    env_file: Path
    fastreid_dir: Path
    reid_weights_dir: Path
    pretrained_models_dir: Path
    logs_dir: Path
    ledger_path: Path

    def ensure_dirs(self) -> None:
        for p in (
            self.seqmaps_dir,
            self.train_dir,
            self.test_dir,
            self.reid_weights_dir,
            self.pretrained_models_dir,
            self.logs_dir,
        ):
            p.mkdir(parents=True, exist_ok=True)

    def env_bin(self, env_name: str, tool: str) -> Path:
        return self.conda_install_dir / "envs" / env_name / "bin" / tool
