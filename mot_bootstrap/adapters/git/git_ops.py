from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from mot_bootstrap.errors import InstallError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitRepoSpec:
    name: str
    url: str
    local_path: Path
    commit: str | None = None  # pinned revision; None keeps the default branch


class GitError(InstallError):
    pass


def _run_git(args: list[str], repo_path: Path | None = None) -> str:
    cmd = ["git"]
    if repo_path is not None:
        cmd += ["-C", str(repo_path)]
    cmd += args
    try:
        out = subprocess.check_output(cmd, stderr=subprocess.STDOUT)
        return out.decode("utf-8", errors="replace")
    except FileNotFoundError as exc:
        raise GitError("git executable not found") from exc
    except subprocess.CalledProcessError as exc:
        msg = exc.output.decode("utf-8", errors="replace")
        raise GitError(f"git failed: {' '.join(cmd)}\n{msg}") from exc


def is_cloned(spec: GitRepoSpec) -> bool:
    return (spec.local_path / ".git").exists()


def clone_pinned(spec: GitRepoSpec) -> None:
    """Clone ``spec`` and check out its pinned commit.

    A clone that was interrupted before checkout has a ``.git`` dir and is
    treated as done by ``is_cloned``; the checkout is cheap, so it is
    repeated whenever this runs.
    """
    if not is_cloned(spec):
        spec.local_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning %s", spec.name)
        _run_git(["clone", spec.url, str(spec.local_path)])
    if spec.commit:
        logger.info("Checking out %s at %s", spec.name, spec.commit[:12])
        _run_git(["checkout", spec.commit], repo_path=spec.local_path)
