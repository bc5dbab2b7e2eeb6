"""
Process Manager - Runs mongod and mongos as native processes.

Processes are started detached in their own session so they outlive phil. Each
started process gets a PID file so `phil stop` can find it later.
"""

import logging
import os
import shutil
import signal
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from phil.commands.constants import (
    DEFAULT_PID_DIR,
    ERROR_BINARY_NOT_FOUND,
    MONGOD_BINARY,
    MONGOS_BINARY,
    PROCESS_WAIT_TIMEOUT,
)
from phil.commands.errors import ConfigurationError, ProcessStartFailure
from phil.commands.security import Credential, TlsOptions
from phil.commands.topology import NodeRole, NodeSpec
from phil.commands.utils import console

logger = logging.getLogger(__name__)


@dataclass
class NodeHandle:
    """A started server process."""

    spec: NodeSpec
    pid: int
    log_file: Optional[str] = None
    process: Optional[subprocess.Popen] = field(default=None, repr=False)


class ProcessManager(Protocol):
    def start(self, spec: NodeSpec) -> NodeHandle: ...

    def stop(self, handle: NodeHandle) -> None: ...

    def is_alive(self, handle: NodeHandle) -> bool: ...


class MongoProcessManager:
    """Manages mongod/mongos as native binary processes."""

    def __init__(
        self,
        binary_path: Optional[str] = None,
        pid_dir: str = DEFAULT_PID_DIR,
        tls: Optional[TlsOptions] = None,
        credential: Optional[Credential] = None,
        require_binary: bool = True,
    ):
        """
        Initialize the MongoProcessManager.

        Args:
            binary_path: Directory holding mongod/mongos, or the path of a
                mongod binary whose directory also holds mongos. If None,
                searches PATH and common locations.
            pid_dir: Directory for PID files.
            tls: Start every server requiring TLS with these certificates.
            credential: Start every server with this credential's key file.
            require_binary: If True, raise ConfigurationError when mongod
                cannot be found. If False, resolution is deferred to start().
        """
        self.binary_dir = self._resolve_binary_dir(binary_path)
        self.require_binary = require_binary
        if require_binary:
            self.binary(MONGOD_BINARY)

        self.tls = tls
        self.credential = credential
        self.pid_file_dir = Path(pid_dir)
        self.pid_file_dir.mkdir(parents=True, exist_ok=True)

    def _resolve_binary_dir(self, binary_path: Optional[str]) -> Optional[str]:
        if not binary_path:
            return None
        if os.path.isdir(binary_path):
            return binary_path
        if os.path.isfile(binary_path):
            return os.path.dirname(os.path.abspath(binary_path))
        console.print(
            f"[yellow]Warning: binary path {binary_path!r} not found, searching PATH[/yellow]"
        )
        return None

    def binary(self, name: str) -> str:
        """Find the named binary in the binary directory, PATH or common locations."""
        candidates = []
        if self.binary_dir:
            candidates.append(os.path.join(self.binary_dir, name))

        found = shutil.which(name)
        if found:
            candidates.append(found)

        candidates.extend(
            [
                f"/usr/local/bin/{name}",
                f"/usr/bin/{name}",
                os.path.expanduser(f"~/bin/{name}"),
                f"./{name}",
            ]
        )

        for path in candidates:
            if os.path.isfile(path) and os.access(path, os.X_OK):
                return path

        raise ConfigurationError(
            ERROR_BINARY_NOT_FOUND.format(binary=name),
            code="BINARY_NOT_FOUND",
            details={"searched": candidates},
        )

    def _get_pid_file(self, spec: NodeSpec) -> Path:
        return self.pid_file_dir / f"{spec.host}-{spec.port}.pid"

    def _save_pid(self, spec: NodeSpec, pid: int):
        self._get_pid_file(spec).write_text(str(pid))

    def _remove_pid_file(self, pid_file: Path):
        if pid_file.exists():
            pid_file.unlink()

    def _is_process_running(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)  # Signal 0 checks if process exists
            return True
        except (OSError, ProcessLookupError):
            return False

    def build_command(self, spec: NodeSpec) -> list[str]:
        """Command line for the server described by ``spec``."""
        log_dir = Path(spec.dbpath) if spec.dbpath else Path(".")

        if spec.is_router:
            cmd = [
                self.binary(MONGOS_BINARY),
                "--port",
                str(spec.port),
                "--bind_ip",
                spec.host,
                "--configdb",
                spec.config_db or "",
                "--logpath",
                str(log_dir / "mongos.log"),
            ]
        else:
            cmd = [
                self.binary(MONGOD_BINARY),
                "--port",
                str(spec.port),
                "--bind_ip",
                spec.host,
                "--dbpath",
                str(spec.dbpath),
                "--logpath",
                str(log_dir / "mongod.log"),
            ]
            if spec.set_name:
                cmd.extend(["--replSet", spec.set_name])
            if spec.role == NodeRole.CONFIG_SERVER:
                cmd.append("--configsvr")
            if spec.role == NodeRole.SHARD_MEMBER:
                cmd.append("--shardsvr")

        if self.tls is not None:
            cmd.extend(self.tls.server_args())
        if self.credential is not None:
            if not spec.is_router:
                cmd.append("--auth")
            cmd.extend(["--keyFile", self.credential.key_file])

        cmd.extend(spec.extra_args)
        return cmd

    def start(self, spec: NodeSpec) -> NodeHandle:
        """Start the server for ``spec`` detached, logging to its data directory."""
        existing_pid = self._load_pid(self._get_pid_file(spec))
        if existing_pid and self._is_process_running(existing_pid):
            console.print(
                f"[yellow]{spec} is already running (PID: {existing_pid}), reusing it[/yellow]"
            )
            return NodeHandle(spec=spec, pid=existing_pid)

        try:
            cmd = self.build_command(spec)
        except ConfigurationError as e:
            raise ProcessStartFailure(str(e), node=spec.address) from e

        data_path = Path(spec.dbpath) if spec.dbpath else Path(".")
        data_path.mkdir(parents=True, exist_ok=True)
        output_file = data_path / "stdout.log"

        logger.debug("Starting %s: %s", spec, " ".join(cmd))
        console.print(f"[cyan]Starting {spec}...[/cyan]")

        try:
            with open(output_file, "a", encoding="utf-8") as out:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as e:
            raise ProcessStartFailure(
                f"Failed to start {spec}: {e}", node=spec.address
            ) from e

        self._save_pid(spec, process.pid)
        console.print(f"[green]✓ Started {spec} (PID: {process.pid})[/green]")
        return NodeHandle(
            spec=spec,
            pid=process.pid,
            log_file=str(data_path / ("mongos.log" if spec.is_router else "mongod.log")),
            process=process,
        )

    def is_alive(self, handle: NodeHandle) -> bool:
        if handle.process is not None:
            return handle.process.poll() is None
        return self._is_process_running(handle.pid)

    def stop(self, handle: NodeHandle) -> None:
        """Stop a started server, escalating to SIGKILL after a timeout."""
        if handle.process is not None:
            process = handle.process
            process.terminate()
            try:
                process.wait(timeout=PROCESS_WAIT_TIMEOUT)
            except subprocess.TimeoutExpired:
                console.print(f"[yellow]Force killing {handle.spec}...[/yellow]")
                process.kill()
                process.wait()
        else:
            self._kill_pid(handle.pid)

        self._remove_pid_file(self._get_pid_file(handle.spec))
        console.print(f"[green]✓ Stopped {handle.spec}[/green]")

    def _kill_pid(self, pid: int) -> None:
        if not self._is_process_running(pid):
            return
        os.kill(pid, signal.SIGTERM)
        deadline = time.monotonic() + PROCESS_WAIT_TIMEOUT
        while time.monotonic() < deadline:
            if not self._is_process_running(pid):
                return
            time.sleep(0.1)
        os.kill(pid, signal.SIGKILL)

    def _load_pid(self, pid_file: Path) -> Optional[int]:
        if pid_file.exists():
            try:
                return int(pid_file.read_text().strip())
            except (ValueError, OSError):
                return None
        return None

    def stop_all(self) -> int:
        """Stop every process recorded in the PID directory.

        Returns:
            Number of processes stopped
        """
        stopped = 0
        for pid_file in sorted(self.pid_file_dir.glob("*.pid")):
            pid = self._load_pid(pid_file)
            if pid and self._is_process_running(pid):
                self._kill_pid(pid)
                console.print(f"[green]✓ Stopped {pid_file.stem} (PID: {pid})[/green]")
                stopped += 1
            self._remove_pid_file(pid_file)

        if stopped == 0:
            console.print("[yellow]No MongoDB processes started by phil are running[/yellow]")
        return stopped
