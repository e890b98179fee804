"""Process control: one interface over local and remote assistant execution."""

from __future__ import annotations

import shlex
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Protocol

from doze.infra.observability.logger import get_logger

logger = get_logger(__name__)


class ProcessHandle(Protocol):
    """Live child process with its three standard streams."""

    pid: int | None
    stdin: IO[bytes]
    stdout: IO[bytes]
    stderr: IO[bytes]

    def poll(self) -> int | None: ...

    def wait(self) -> int: ...

    def interrupt(self) -> None: ...

    def kill(self) -> None: ...


class PopenHandle:
    """ProcessHandle backed by `subprocess.Popen`."""

    def __init__(self, proc: subprocess.Popen[bytes]) -> None:
        if proc.stdin is None or proc.stdout is None or proc.stderr is None:
            raise OSError("process pipes are not available")
        self._proc = proc
        self.pid: int | None = proc.pid
        self.stdin: IO[bytes] = proc.stdin
        self.stdout: IO[bytes] = proc.stdout
        self.stderr: IO[bytes] = proc.stderr

    def poll(self) -> int | None:
        return self._proc.poll()

    def wait(self) -> int:
        return self._proc.wait()

    def interrupt(self) -> None:
        self._proc.send_signal(signal.SIGINT)

    def kill(self) -> None:
        self._proc.kill()


@dataclass(frozen=True)
class AssistantCommand:
    """Command line of the assistant in stream-json mode."""

    executable: str = "claude"
    skip_permissions: bool = True

    def argv(self, resume_token: str = "") -> list[str]:
        args = [self.executable]
        if resume_token:
            args.extend(["--resume", resume_token])
        args.extend(
            [
                "--print",
                "--input-format=stream-json",
                "--output-format=stream-json",
                "--verbose",
            ]
        )
        if self.skip_permissions:
            args.append("--dangerously-skip-permissions")
        return args


class ProcessLauncher:
    """Start a process with piped stdio; variants differ only in where it runs."""

    name = "base"

    def launch(self, argv: list[str], cwd: Path) -> ProcessHandle:
        raise NotImplementedError

    def _popen(self, argv: list[str], cwd: Path | None) -> PopenHandle:
        proc = subprocess.Popen(
            argv,
            cwd=cwd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        try:
            return PopenHandle(proc)
        except OSError:
            proc.kill()
            raise


class LocalProcessLauncher(ProcessLauncher):
    name = "local"

    def launch(self, argv: list[str], cwd: Path) -> ProcessHandle:
        if not cwd.is_dir():
            raise FileNotFoundError(f"working directory does not exist: {cwd}")
        return self._popen(argv, cwd)


class RemoteExecLauncher(ProcessLauncher):
    """Run the assistant through a transport command such as `ssh box` or a sandbox exec CLI."""

    name = "remote"

    def __init__(self, prefix: list[str]) -> None:
        if not prefix:
            raise ValueError("remote exec prefix must not be empty")
        self._prefix = list(prefix)

    @classmethod
    def from_string(cls, raw: str) -> "RemoteExecLauncher":
        return cls(shlex.split(raw))

    def launch(self, argv: list[str], cwd: Path) -> ProcessHandle:
        remote_command = f"cd {shlex.quote(str(cwd))} && exec {shlex.join(argv)}"
        return self._popen([*self._prefix, remote_command], None)


def build_launcher(remote_exec_prefix: str) -> ProcessLauncher:
    if remote_exec_prefix.strip():
        launcher: ProcessLauncher = RemoteExecLauncher.from_string(remote_exec_prefix)
    else:
        launcher = LocalProcessLauncher()
    logger.info("process.launcher variant=%s", launcher.name)
    return launcher
