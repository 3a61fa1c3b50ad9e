from __future__ import annotations

import zipfile
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from conftest import snapshot_tree
from mot_bootstrap.adapters.archive import ZipExtractor
from mot_bootstrap.adapters.git.git_ops import GitRepoSpec
from mot_bootstrap.errors import StepFailedError, TransferError
from mot_bootstrap.pipeline.config import BootstrapConfig, NetworkConfig, PathsConfig
from mot_bootstrap.pipeline.orchestrator import Orchestrator, StepStatus
from mot_bootstrap.pipeline.steps import SetupContext, build_setup_steps, data_steps, install_steps
from mot_bootstrap.provisioning.manifest import APLIFT_IDS, BYTE_IDS, SourceKind


@dataclass
class _KeyedFetcher:
    fail_once: set[str] = field(default_factory=set)
    calls: list[str] = field(default_factory=list)

    def fetch(self, source_ref: str, destination: Path) -> bool:
        self.calls.append(source_ref)
        if source_ref in self.fail_once:
            self.fail_once.discard(source_ref)
            raise TransferError(f"id {source_ref}: connection reset")
        destination.write_text(f"content of {source_ref}\n")
        return True


@dataclass
class _ArchiveFetcher:
    calls: list[str] = field(default_factory=list)
    corrupt_last: bool = False

    def fetch(self, source_ref: str, destination: Path) -> bool:
        self.calls.append(source_ref)
        destination.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(destination, "w") as zf:
            for split, seq in (("train", "MOT20-01"), ("train", "MOT20-05"), ("test", "MOT20-04")):
                zf.writestr(f"MOT20/{split}/{seq}/seqinfo.ini", f"[Sequence]\nname={seq}\n")
        if self.corrupt_last:
            # Stored entries keep their bytes verbatim; this breaks the CRC of the last one.
            raw = destination.read_bytes()
            destination.write_bytes(raw.replace(b"name=MOT20-04", b"name=MOT20-0X"))
        return True


@dataclass
class _CountingExtractor:
    calls: int = 0

    def extract(self, archive: Path, target_dir: Path) -> None:
        self.calls += 1
        ZipExtractor().extract(archive, target_dir)


def _context(tmp_path: Path, keyed: _KeyedFetcher, archive: _ArchiveFetcher, workers: int = 2) -> SetupContext:
    cfg = BootstrapConfig(
        paths=PathsConfig(
            data_path=str(tmp_path / "data"),
            project_dir=str(tmp_path / "project"),
            conda_install_dir=str(tmp_path / "conda"),
            shell_profile=str(tmp_path / ".bashrc"),
            archive_cache_dir=str(tmp_path / "cache"),
        ),
        network=NetworkConfig(fetch_workers=workers),
    )
    paths = cfg.resolve()
    paths.ensure_dirs()
    return SetupContext(
        config=cfg,
        paths=paths,
        fetchers={SourceKind.KEYED_ID: keyed, SourceKind.RESUMABLE_ARCHIVE: archive},
        installer=None,  # type: ignore[arg-type]
        extractor=_CountingExtractor(),  # type: ignore[arg-type]
    )


def _outputs(ctx: SetupContext) -> dict[str, bytes]:
    return {**snapshot_tree(ctx.paths.data_path), **snapshot_tree(ctx.paths.project_dir)}


def test_second_run_is_a_no_op(tmp_path: Path) -> None:
    keyed, archive = _KeyedFetcher(), _ArchiveFetcher()
    ctx = _context(tmp_path, keyed, archive)

    first = Orchestrator().run(data_steps(ctx))
    after_first = _outputs(ctx)
    calls_after_first = (len(keyed.calls), len(archive.calls), ctx.extractor.calls)

    second = Orchestrator().run(data_steps(ctx))

    assert first.names(StepStatus.SKIPPED) == []
    assert second.names(StepStatus.COMPLETED) == []
    assert (len(keyed.calls), len(archive.calls), ctx.extractor.calls) == calls_after_first
    assert calls_after_first == (16 + 1 + 5, 1, 1)
    assert _outputs(ctx) == after_first


def test_layout_matches_training_expectations(tmp_path: Path) -> None:
    ctx = _context(tmp_path, _KeyedFetcher(), _ArchiveFetcher())
    Orchestrator().run(data_steps(ctx))

    mot20 = tmp_path / "data" / "MOT20"
    for split, seq in (("train", "MOT20-02"), ("test", "MOT20-08")):
        assert (mot20 / split / seq / "det" / "byte065.txt").read_text() == f"content of {BYTE_IDS[seq]}\n"
        assert (mot20 / split / seq / "det" / "aplift.txt").read_text() == f"content of {APLIFT_IDS[seq]}\n"
    assert (mot20 / "train" / "MOT20-01" / "seqinfo.ini").exists()
    assert (mot20 / "seqmaps" / "mot20-train-all.txt").read_text() == (
        "name\nMOT20-01\nMOT20-02\nMOT20-03\nMOT20-05\n"
    )
    models = tmp_path / "project" / "fastreid-models"
    assert (models / "model_weights" / "msmt_bot_R50-ibn.pth").exists()
    assert sorted(p.name for p in (models / "pretrained_models").iterdir()) == [
        "model_configs.txt",
        "mot17private.pth",
        "mot17public.pth",
        "mot20private.pth",
        "mot20public.pth",
    ]


def test_resume_after_failed_transfer(tmp_path: Path) -> None:
    failing_id = APLIFT_IDS["MOT20-03"]
    keyed, archive = _KeyedFetcher(fail_once={failing_id}), _ArchiveFetcher()
    ctx = _context(tmp_path, keyed, archive, workers=1)

    with pytest.raises(StepFailedError) as info:
        Orchestrator().run(data_steps(ctx))

    assert info.value.step == "det_train"
    assert info.value.completed == ("mot20_archive", "mot20_extract")
    assert list(ctx.paths.seqmaps_dir.iterdir()) == []
    assert list(ctx.paths.reid_weights_dir.iterdir()) == []

    keyed.calls.clear()
    report = Orchestrator().run(data_steps(ctx))

    assert report.names(StepStatus.SKIPPED) == ["mot20_archive", "mot20_extract"]
    assert keyed.calls[0] == failing_id
    assert BYTE_IDS["MOT20-01"] not in keyed.calls
    assert len(archive.calls) == 1
    assert ctx.extractor.calls == 1


def test_preseeded_artifacts_are_not_fetched(tmp_path: Path) -> None:
    keyed, archive = _KeyedFetcher(), _ArchiveFetcher()
    ctx = _context(tmp_path, keyed, archive)
    seeded = ctx.paths.reid_weights_dir / "msmt_bot_R50-ibn.pth"
    seeded.write_bytes(b"local copy")
    for seq in ("MOT20-01", "MOT20-05"):
        (ctx.paths.train_dir / seq).mkdir(parents=True)

    report = Orchestrator().run(data_steps(ctx))

    assert "reid_weights" in report.names(StepStatus.SKIPPED)
    assert "mot20_extract" in report.names(StepStatus.SKIPPED)
    assert archive.calls == []
    assert seeded.read_bytes() == b"local copy"


def test_extraction_failure_keeps_archive_for_retry(tmp_path: Path) -> None:
    keyed, archive = _KeyedFetcher(), _ArchiveFetcher()
    ctx = _context(tmp_path, keyed, archive)
    ctx.paths.archive_path.parent.mkdir(parents=True, exist_ok=True)
    ctx.paths.archive_path.write_bytes(b"truncated, not a zip")

    with pytest.raises(StepFailedError) as info:
        Orchestrator().run(data_steps(ctx))

    assert info.value.step == "mot20_extract"
    assert ctx.paths.archive_path.exists()
    assert archive.calls == []


def test_partially_extracted_archive_is_extracted_again(tmp_path: Path) -> None:
    keyed, archive = _KeyedFetcher(), _ArchiveFetcher(corrupt_last=True)
    ctx = _context(tmp_path, keyed, archive)

    with pytest.raises(StepFailedError) as info:
        Orchestrator().run(data_steps(ctx))
    assert info.value.step == "mot20_extract"
    assert (ctx.paths.train_dir / "MOT20-01").is_dir()
    assert (ctx.paths.train_dir / "MOT20-05").is_dir()

    with pytest.raises(StepFailedError) as info:
        Orchestrator().run(data_steps(ctx))
    assert info.value.step == "mot20_extract"
    assert info.value.completed == ("mot20_archive",)
    assert ctx.extractor.calls == 2
    assert len(archive.calls) == 1

    archive.corrupt_last = False
    ctx.paths.archive_path.unlink()
    report = Orchestrator().run(data_steps(ctx))

    assert report.names(StepStatus.COMPLETED)[:2] == ["mot20_archive", "mot20_extract"]
    assert (ctx.paths.test_dir / "MOT20-04" / "seqinfo.ini").read_text() == "[Sequence]\nname=MOT20-04\n"


@dataclass
class _FakeInstaller:
    installed: bool = False
    shell: bool = False
    envs: set[str] = field(default_factory=set)
    log: list[str] = field(default_factory=list)

    def miniconda_installed(self) -> bool:
        return self.installed

    def install_miniconda(self) -> None:
        self.log.append("install_miniconda")
        self.installed = True

    def accept_tos(self, channels: list[str]) -> None:
        self.log.append("accept_tos")

    def shell_initialised(self, profile: Path) -> bool:
        return self.shell

    def init_shell(self, profile: Path) -> None:
        self.log.append("init_shell")
        self.shell = True

    def env_exists(self, name: str) -> bool:
        return name in self.envs

    def create_env(self, env_file: Path) -> None:
        self.log.append(f"create_env:{env_file.name}")
        self.envs.add("SUSHI")

    def pip_install_requirements(self, env_name: str, requirements: Path) -> None:
        self.log.append(f"pip:{env_name}")

    def install_packages(self, env_name: str, packages: list[str], channel: str) -> None:
        self.log.append(f"conda_install:{','.join(packages)}@{channel}")


def test_install_steps_run_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    clones: list[GitRepoSpec] = []

    def fake_clone(spec: GitRepoSpec) -> None:
        clones.append(spec)
        (spec.local_path / ".git").mkdir(parents=True, exist_ok=True)

    monkeypatch.setattr("mot_bootstrap.pipeline.steps.clone_pinned", fake_clone)
    ctx = _context(tmp_path, _KeyedFetcher(), _ArchiveFetcher())
    installer = _FakeInstaller()
    ctx.installer = installer  # type: ignore[assignment]

    Orchestrator().run(install_steps(ctx))
    report = Orchestrator().run(install_steps(ctx))

    assert installer.log == [
        "install_miniconda",
        "accept_tos",
        "init_shell",
        "create_env:environment.yml",
        "pip:SUSHI",
        "conda_install:libstdcxx-ng@conda-forge",
    ]
    assert [c.commit for c in clones] == ["afe432b8c0ecd309db7921b7292b2c69813d0991"]
    assert report.names(StepStatus.SKIPPED) == ["miniconda", "conda_env", "fast_reid"]


def test_declared_step_order(tmp_path: Path) -> None:
    ctx = _context(tmp_path, _KeyedFetcher(), _ArchiveFetcher())
    names = [s.name for s in build_setup_steps(ctx)]
    assert names == [
        "miniconda",
        "conda_env",
        "fast_reid",
        "mot20_archive",
        "mot20_extract",
        "det_train",
        "det_test",
        "reid_weights",
        "pretrained_models",
        "seqmaps",
    ]
