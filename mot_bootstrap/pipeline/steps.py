from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from mot_bootstrap.adapters.archive import ZipExtractor, extraction_flag
from mot_bootstrap.adapters.conda.installer import CondaInstaller
from mot_bootstrap.adapters.git.git_ops import GitRepoSpec, clone_pinned, is_cloned
from mot_bootstrap.adapters.http.fetchers import Fetcher
from mot_bootstrap.pipeline.config import BootstrapConfig, ResolvedPaths
from mot_bootstrap.pipeline.orchestrator import ProvisioningStep
from mot_bootstrap.provisioning.fetch_loop import fetch_manifest, manifest_complete
from mot_bootstrap.provisioning.manifest import (
    PRETRAINED_MODEL_IDS,
    REID_WEIGHT_IDS,
    SEQMAPS,
    TEST_SEQUENCES,
    TRAIN_SEQUENCES,
    ArtifactManifest,
    SourceKind,
    archive_artifact,
    detection_manifest,
    keyed_file_manifest,
)
from mot_bootstrap.provisioning.markers import (
    AbsentMarker,
    FileNonEmptyMarker,
    SiblingEntriesMarker,
    all_of,
)
from mot_bootstrap.provisioning.seqmaps import write_seqmaps

# Two known sequence directories stand in for a complete extraction.
EXTRACTED_SENTINELS: tuple[str, ...] = ("MOT20-01", "MOT20-05")
DEPS_STAMP = ".bootstrap-deps"


@dataclass
class SetupContext:
    config: BootstrapConfig
    paths: ResolvedPaths
    fetchers: Mapping[SourceKind, Fetcher]
    installer: CondaInstaller
    extractor: ZipExtractor

    @property
    def fastreid(self) -> GitRepoSpec:
        cfg = self.config.fastreid
        return GitRepoSpec(
            name="fast-reid",
            url=cfg.repo_url,
            local_path=self.paths.fastreid_dir,
            commit=cfg.commit,
        )

    def manifests(self) -> dict[str, ArtifactManifest]:
        p = self.paths
        return {
            "det_train": detection_manifest("det_train", p.train_dir, TRAIN_SEQUENCES),
            "det_test": detection_manifest("det_test", p.test_dir, TEST_SEQUENCES),
            "reid_weights": keyed_file_manifest("reid_weights", p.reid_weights_dir, REID_WEIGHT_IDS),
            "pretrained_models": keyed_file_manifest(
                "pretrained_models", p.pretrained_models_dir, PRETRAINED_MODEL_IDS
            ),
        }


def _deps_stamp(ctx: SetupContext) -> Path:
    return ctx.paths.fastreid_dir / DEPS_STAMP


def install_steps(ctx: SetupContext) -> list[ProvisioningStep]:
    inst = ctx.installer
    conda_cfg = ctx.config.conda
    profile = ctx.paths.shell_profile

    def miniconda() -> None:
        if not inst.miniconda_installed():
            inst.install_miniconda()
        inst.accept_tos(conda_cfg.tos_channels)
        inst.init_shell(profile)

    def fastreid() -> None:
        spec = ctx.fastreid
        clone_pinned(spec)
        inst.pip_install_requirements(conda_cfg.env_name, spec.local_path / ctx.config.fastreid.requirements)
        inst.install_packages(conda_cfg.env_name, conda_cfg.extra_packages, conda_cfg.extra_channel)
        _deps_stamp(ctx).write_text(f"{spec.commit or ''}\n")

    return [
        ProvisioningStep(
            name="miniconda",
            description="Miniconda",
            probe=lambda: inst.miniconda_installed() and inst.shell_initialised(profile),
            action=miniconda,
        ),
        ProvisioningStep(
            name="conda_env",
            description=f"{conda_cfg.env_name} conda environment",
            probe=lambda: inst.env_exists(conda_cfg.env_name),
            action=lambda: inst.create_env(ctx.paths.env_file),
        ),
        ProvisioningStep(
            name="fast_reid",
            description="fast-reid",
            probe=lambda: is_cloned(ctx.fastreid) and FileNonEmptyMarker(_deps_stamp(ctx)).exists(),
            action=fastreid,
        ),
    ]


def data_steps(ctx: SetupContext) -> list[ProvisioningStep]:
    paths = ctx.paths
    net = ctx.config.network
    archive = archive_artifact(net.mot20_url, paths.archive_path)
    extracted = all_of(
        [
            SiblingEntriesMarker(paths.train_dir, EXTRACTED_SENTINELS),
            AbsentMarker(extraction_flag(archive.destination, paths.data_path)),
        ]
    )
    manifests = ctx.manifests()

    def fetch_archive() -> None:
        ctx.fetchers[archive.source_kind].fetch(archive.source_ref, archive.destination)

    def fetch_step(key: str, description: str, workers: int = 1) -> ProvisioningStep:
        manifest = manifests[key]
        return ProvisioningStep(
            name=key,
            description=description,
            probe=lambda: manifest_complete(manifest),
            action=lambda: fetch_manifest(manifest, ctx.fetchers, max_workers=workers),
        )

    seqmap_paths = [paths.seqmaps_dir / spec.filename for spec in SEQMAPS]

    return [
        ProvisioningStep(
            name="mot20_archive",
            description="MOT20 archive (~4.7 GB)",
            probe=lambda: extracted.exists() or FileNonEmptyMarker(archive.destination).exists(),
            action=fetch_archive,
        ),
        ProvisioningStep(
            name="mot20_extract",
            description="MOT20 extraction",
            probe=extracted.exists,
            action=lambda: ctx.extractor.extract(archive.destination, paths.data_path),
        ),
        fetch_step("det_train", "train detection files (byte065 / aplift)", net.fetch_workers),
        fetch_step("det_test", "test detection files (byte065 / aplift)", net.fetch_workers),
        fetch_step("reid_weights", "Re-ID weights"),
        fetch_step("pretrained_models", "pretrained models", net.fetch_workers),
        ProvisioningStep(
            name="seqmaps",
            description="MOT20 seqmap files",
            probe=lambda: all(p.exists() for p in seqmap_paths),
            action=lambda: write_seqmaps(paths.seqmaps_dir, SEQMAPS),
        ),
    ]


def build_setup_steps(ctx: SetupContext) -> list[ProvisioningStep]:
    """Declared order: installs, then dataset, then per-item files, then seqmaps."""
    return install_steps(ctx) + data_steps(ctx)
