"""Process runner: owns the node binary's process from spawn to exit."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from node_keeper.errors import ConflictError, NotFoundError, ProcessError
from node_keeper.log_buffer import LogBuffer
from node_keeper.models import NodeConfig

log = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT = 5.0  # seconds between SIGTERM and SIGKILL
KILL_TIMEOUT = 5.0  # seconds to reap after SIGKILL
READER_DRAIN_TIMEOUT = 1.0


class ProcessRunner:
    """Owns at most one live node process.

    Output lines are appended to ``logs`` with ``STDOUT:``/``STDERR:``
    prefixes.  ``on_exit`` is called with the exit code when the process
    dies on its own (not via :meth:`terminate`).
    """

    def __init__(
        self,
        logs: LogBuffer,
        executable_name: str,
        *,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        on_exit: Callable[[int | None], None] | None = None,
    ) -> None:
        self._logs = logs
        self.executable_name = executable_name
        self.stop_timeout = stop_timeout
        self.on_exit = on_exit
        self._process: asyncio.subprocess.Process | None = None
        self._reader_tasks: list[asyncio.Task[None]] = []
        self._waiter: asyncio.Task[None] | None = None
        self._terminating = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def executable_path(self, db_path: str | Path) -> Path:
        return Path(db_path) / self.executable_name

    def executable_exists(self, db_path: str | Path) -> bool:
        return self.executable_path(db_path).is_file()

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def spawn(self, config: NodeConfig) -> int:
        """Launch the node for ``config`` and return its pid."""
        if self.is_alive():
            raise ConflictError("Node is already running", code="AlreadyRunning")
        # A dead handle that was never reaped is simply discarded
        self._process = None

        executable = self.executable_path(config.db_path)
        if not executable.is_file():
            raise NotFoundError(
                "Node executable not found. Please download it first.",
                code="ExecutableMissing",
            )

        self._logs.append(f"Starting node with config: {config}")
        kwargs: dict[str, Any] = {}
        if os.name == "posix":
            # New process group so the whole tree can be signalled
            kwargs["preexec_fn"] = os.setsid
        elif sys.platform == "win32":
            kwargs["creationflags"] = 0x00000200  # CREATE_NEW_PROCESS_GROUP

        try:
            process = await asyncio.create_subprocess_exec(
                str(executable),
                *config.to_args(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs,
            )
        except OSError as exc:
            self._logs.append(f"Failed to start process: {exc}")
            raise ProcessError(f"Failed to start process: {exc}", code="SpawnRejected") from exc

        self._process = process
        self._terminating = False
        self._reader_tasks = [
            asyncio.create_task(
                self._read_lines(process.stdout, "STDOUT"),  # type: ignore[arg-type]
                name=f"node-{process.pid}-stdout",
            ),
            asyncio.create_task(
                self._read_lines(process.stderr, "STDERR"),  # type: ignore[arg-type]
                name=f"node-{process.pid}-stderr",
            ),
        ]
        self._waiter = asyncio.create_task(
            self._wait_for_exit(process), name=f"node-{process.pid}-waiter",
        )
        self._logs.append(f"Node started (pid {process.pid})")
        log.info("Spawned %s (pid=%s)", executable, process.pid)
        return process.pid

    async def terminate(self) -> int | None:
        """Stop the node: SIGTERM, wait, then SIGKILL. Idempotent.

        Returns the exit code, or None if nothing was running.
        """
        proc = self._process
        if proc is None:
            return None

        self._terminating = True
        try:
            if proc.returncode is None:
                self._signal(proc, force=False)
                try:
                    await asyncio.wait_for(proc.wait(), timeout=self.stop_timeout)
                except asyncio.TimeoutError:
                    log.warning(
                        "Node (pid=%s) ignored SIGTERM for %.1fs, killing",
                        proc.pid, self.stop_timeout,
                    )
                    self._signal(proc, force=True)
                    try:
                        await asyncio.wait_for(proc.wait(), timeout=KILL_TIMEOUT)
                    except asyncio.TimeoutError:
                        raise ProcessError(
                            f"Node (pid {proc.pid}) did not exit after SIGKILL",
                            code="TerminateFailed",
                        ) from None
            await self._drain_readers()
            self._logs.append("Node stopped")
            return proc.returncode
        finally:
            if self._waiter is not None:
                self._waiter.cancel()
                self._waiter = None
            self._process = None
            self._terminating = False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _signal(proc: asyncio.subprocess.Process, force: bool) -> None:
        try:
            if os.name == "posix":
                sig = signal.SIGKILL if force else signal.SIGTERM
                os.killpg(os.getpgid(proc.pid), sig)
            elif force:
                proc.kill()
            else:
                proc.terminate()
        except (ProcessLookupError, OSError):
            # Already gone between the liveness check and the signal
            pass

    async def _drain_readers(self) -> None:
        tasks, self._reader_tasks = self._reader_tasks, []
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=READER_DRAIN_TIMEOUT)
        for task in pending:
            task.cancel()

    async def _read_lines(self, stream: asyncio.StreamReader, label: str) -> None:
        """Copy a stream into the log buffer one line at a time."""
        try:
            while True:
                try:
                    raw = await stream.readline()
                except ValueError:
                    # Line longer than the stream limit; readline dropped it
                    self._logs.append(f"{label}: <line too long, dropped>")
                    continue
                if not raw:
                    break
                text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                self._logs.append(f"{label}: {text}")
        except asyncio.CancelledError:
            pass

    async def _wait_for_exit(self, proc: asyncio.subprocess.Process) -> None:
        code = await proc.wait()
        if self._terminating or self._process is not proc:
            # terminate() owns the teardown
            return
        await self._drain_readers()
        self._logs.append(f"Node exited with code {code}")
        log.warning("Node (pid=%s) exited unexpectedly with code %s", proc.pid, code)
        self._process = None
        self._waiter = None
        if self.on_exit is not None:
            self.on_exit(code)
