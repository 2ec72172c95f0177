"""Execution of external commands and host file writes.

Every command is echoed before it runs, the way ``set -x`` does for a shell
script, so the failing command is always visible next to its output.
"""

import os
import shlex
import shutil
import subprocess
from pathlib import Path

from rich.console import Console

from kubeadm_bootstrap.exceptions import CommandError
from kubeadm_bootstrap.logging_config import get_logger

logger = get_logger(__name__)


class CommandRunner:
    """Runs commands and writes files on the local host.

    Args:
        sudo: Prefix commands with sudo and write files through it
        dry_run: Echo and record commands without executing anything
        root: Prefix applied to every host file path
        console: Console used to echo commands
    """

    def __init__(
        self,
        sudo: bool = False,
        dry_run: bool = False,
        root: str | Path = "/",
        console: Console | None = None,
    ):
        self.sudo = sudo
        self.dry_run = dry_run
        self.root = Path(root)
        self.console = console or Console(stderr=True)
        self.history: list[list[str]] = []

    def host_path(self, path: str | Path) -> Path:
        """Map an absolute host path below the configured root."""
        return self.root / str(path).lstrip("/")

    def _echo(self, line: str) -> None:
        logger.info(line)
        self.console.print(f"+ {line}", style="dim", markup=False, highlight=False)

    def run(
        self,
        cmd: list[str],
        input: str | None = None,
        capture: bool = False,
        check: bool = True,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess:
        """Run a command.

        Args:
            cmd: Command and arguments, never interpreted by a shell
            input: Text passed on stdin
            capture: Capture stdout and stderr instead of streaming them
            check: Raise CommandError on a non-zero exit
            timeout: Seconds before the command is killed

        Returns:
            The completed process

        Raises:
            CommandError: If the command fails, is missing, or times out
        """
        argv = ["sudo", *cmd] if self.sudo else list(cmd)
        self.history.append(argv)
        self._echo(shlex.join(argv))

        if self.dry_run:
            return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")

        try:
            result = subprocess.run(
                argv,
                input=input,
                capture_output=capture,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            logger.error(f"Command not found: {argv[0]}")
            raise CommandError(
                f"Command not found: {argv[0]}",
                f"Install '{argv[0]}' or make sure it is in PATH",
                command=argv,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out after {timeout} seconds: {shlex.join(argv)}")
            raise CommandError(
                f"Command timed out after {timeout} seconds: {shlex.join(argv)}",
                command=argv,
            )

        logger.debug(f"Command exited with return code {result.returncode}")
        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip() if capture else None
            raise CommandError(
                f"Command failed with exit code {result.returncode}: {shlex.join(argv)}",
                stderr or None,
                command=argv,
                returncode=result.returncode,
            )
        return result

    def ensure_dir(
        self, path: str | Path, uid: int | None = None, gid: int | None = None
    ) -> None:
        """Create a directory and its parents if missing, optionally owned by uid:gid."""
        target = self.host_path(path)
        self._echo(f"mkdir -p {shlex.quote(str(target))}")
        if self.dry_run:
            return

        if self.sudo:
            if uid is None:
                self.run(["mkdir", "-p", str(target)], capture=True)
            else:
                self.run(["install", "-d", "-o", str(uid), "-g", str(gid), str(target)], capture=True)
            return

        try:
            target.mkdir(parents=True, exist_ok=True)
            if uid is not None:
                os.chown(target, uid, gid)
        except PermissionError as e:
            raise CommandError(f"Permission denied creating {target}", str(e))

    def read_file(self, path: str | Path) -> str | None:
        """Read a host file, or return None if it does not exist.

        Reads are side-effect free, so they happen in dry-run mode too.
        """
        target = self.host_path(path)
        if self.sudo and not self.dry_run:
            if self.run(["test", "-e", str(target)], check=False).returncode != 0:
                return None
            return self.run(["cat", str(target)], capture=True).stdout

        try:
            return target.read_text()
        except FileNotFoundError:
            return None
        except PermissionError as e:
            raise CommandError(
                f"Permission denied reading {target}",
                f"{e}\nRun as root or enable sudo (--sudo)",
            )

    def write_file(self, path: str | Path, content: str, mode: int = 0o644) -> None:
        """Write a host file, replacing any previous content.

        Rewriting the same content is a no-op from the host's point of view,
        so repeated runs never fail because the file already exists.
        """
        target = self.host_path(path)
        self._echo(f"write {shlex.quote(str(target))}")
        logger.debug(f"Content for {target}:\n{content}")
        if self.dry_run:
            return

        if self.sudo:
            self.run(["mkdir", "-p", str(target.parent)], capture=True)
            self.run(["tee", str(target)], input=content, capture=True)
            self.run(["chmod", format(mode, "o"), str(target)], capture=True)
            return

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
            os.chmod(target, mode)
        except PermissionError as e:
            raise CommandError(
                f"Permission denied writing {target}",
                f"{e}\nRun as root or enable sudo (--sudo)",
            )

    def copy_file(
        self, src: str | Path, dst: str | Path, uid: int, gid: int, mode: int = 0o600
    ) -> None:
        """Copy a host file and hand it to the given owner."""
        source = self.host_path(src)
        target = self.host_path(dst)
        self._echo(f"install -m {format(mode, 'o')} -o {uid} -g {gid} {source} {target}")
        if self.dry_run:
            return

        if self.sudo:
            self.run(
                ["install", "-m", format(mode, "o"), "-o", str(uid), "-g", str(gid),
                 str(source), str(target)],
                capture=True,
            )
            return

        try:
            shutil.copyfile(source, target)
            os.chmod(target, mode)
            os.chown(target, uid, gid)
        except FileNotFoundError:
            raise CommandError(
                f"File not found: {source}",
                "The control plane may not have been initialized yet",
            )
        except PermissionError as e:
            raise CommandError(f"Permission denied copying {source} to {target}", str(e))
