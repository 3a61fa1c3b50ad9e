from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from mot_bootstrap.adapters.http.fetchers import Fetcher
from mot_bootstrap.errors import InstallError
from mot_bootstrap.provisioning.markers import ExecutableMarker

logger = logging.getLogger(__name__)


def _run(cmd: Sequence[str], *, capture: bool = False) -> str:
    try:
        res = subprocess.run(
            list(cmd),
            check=True,
            stdout=subprocess.PIPE if capture else None,
            stderr=subprocess.STDOUT if capture else None,
            text=True,
        )
    except FileNotFoundError as exc:
        raise InstallError(f"command not found: {cmd[0]}") from exc
    except subprocess.CalledProcessError as exc:
        detail = f"\n{exc.stdout}" if exc.stdout else ""
        raise InstallError(f"command failed ({exc.returncode}): {' '.join(cmd)}{detail}") from exc
    return res.stdout or ""


@dataclass
class CondaInstaller:
    """Thin wrapper over the conda/pip command lines."""

    install_dir: Path
    installer_url: str
    fetcher: Fetcher
    download_dir: Path = Path("/tmp")

    @property
    def conda(self) -> Path:
        return self.install_dir / "bin" / "conda"

    def miniconda_installed(self) -> bool:
        return ExecutableMarker(self.conda).exists()

    def install_miniconda(self) -> None:
        script = self.download_dir / "miniconda.sh"
        self.fetcher.fetch(self.installer_url, script)
        logger.info("Installing Miniconda into %s", self.install_dir)
        try:
            _run(["bash", str(script), "-b", "-p", str(self.install_dir)])
        finally:
            script.unlink(missing_ok=True)

    def accept_tos(self, channels: Sequence[str]) -> None:
        # Older conda releases have no `tos` subcommand.
        for channel in channels:
            try:
                _run(
                    [str(self.conda), "tos", "accept", "--override-channels", "--channel", channel],
                    capture=True,
                )
            except InstallError as exc:
                logger.debug("conda tos accept skipped for %s: %s", channel, exc)

    def shell_initialised(self, profile: Path) -> bool:
        try:
            text = profile.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return False
        return str(self.install_dir) in text

    def init_shell(self, profile: Path) -> None:
        if self.shell_initialised(profile):
            return
        if profile.expanduser() == Path.home() / ".bashrc":
            logger.info("Adding conda init to %s", profile)
            _run([str(self.conda), "init", "bash"])
            return
        # `conda init bash` only writes ~/.bashrc.
        logger.info("Adding conda shell hook to %s", profile)
        profile.parent.mkdir(parents=True, exist_ok=True)
        with profile.open("a", encoding="utf-8") as fh:
            fh.write(f'\n# conda (mot-bootstrap)\neval "$(\'{self.conda}\' shell.bash hook)"\n')

    def env_exists(self, name: str) -> bool:
        if not self.miniconda_installed():
            return False
        out = _run([str(self.conda), "env", "list"], capture=True)
        for line in out.splitlines():
            if line.startswith("#") or not line.strip():
                continue
            if line.split()[0] == name:
                return True
        return False

    def create_env(self, env_file: Path) -> None:
        if not env_file.is_file():
            raise InstallError(f"environment file not found: {env_file}")
        logger.info("Creating conda environment from %s (this takes a while)", env_file)
        _run([str(self.conda), "env", "create", "-f", str(env_file)])

    def pip_install_requirements(self, env_name: str, requirements: Path) -> None:
        pip = self.install_dir / "envs" / env_name / "bin" / "pip"
        logger.info("Installing %s into %s", requirements.name, env_name)
        _run([str(pip), "install", "-q", "-r", str(requirements)])

    def install_packages(self, env_name: str, packages: Sequence[str], channel: str) -> None:
        if not packages:
            return
        _run([str(self.conda), "install", "-n", env_name, "-c", channel, *packages, "-y", "-q"])
