"""Lifecycle supervisor: arbitrates start, stop and update of the node."""

from __future__ import annotations

import asyncio
import logging

from node_keeper.config import Config
from node_keeper.downloader import Downloader
from node_keeper.errors import ConflictError, NodeKeeperError, ValidationError
from node_keeper.events import EventBus
from node_keeper.log_buffer import LogBuffer
from node_keeper.models import (
    DownloadComplete,
    DownloadFailed,
    DownloadProgress,
    DownloadProgressed,
    LogLine,
    NodeConfig,
    RunState,
    StatusChanged,
)
from node_keeper.process_manager.runner import ProcessRunner

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0  # seconds

_LEGAL_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.STOPPED: frozenset({RunState.STARTING, RunState.UPDATING}),
    RunState.STARTING: frozenset({RunState.RUNNING, RunState.STOPPED}),
    # RUNNING -> STOPPED only through liveness reconciliation
    RunState.RUNNING: frozenset({RunState.STOPPING, RunState.STOPPED}),
    RunState.STOPPING: frozenset({RunState.STOPPED}),
    RunState.UPDATING: frozenset({RunState.STOPPED}),
}


class LifecycleSupervisor:
    """Owns the RunState of the single node and serialises every intent.

    All transitions happen on one event loop.  Each intent checks the
    current state and makes its first transition without suspending, so
    a second caller always observes the in-flight state and fails fast
    with ConflictError instead of queuing.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        downloader: Downloader,
        logs: LogBuffer,
        *,
        events: EventBus | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.runner = runner
        self.downloader = downloader
        self.events = events or EventBus()
        self.poll_interval = poll_interval
        self._logs = logs
        self._state = RunState.STOPPED
        self._lock = asyncio.Lock()
        self._progress: DownloadProgress | None = None
        self._update_task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        runner.on_exit = self._on_process_exit

    @classmethod
    def from_config(cls, config: Config) -> LifecycleSupervisor:
        logs = LogBuffer()
        runner = ProcessRunner(
            logs, config.executable_name, stop_timeout=config.stop_timeout,
        )
        downloader = Downloader(
            config.release_url, config.asset_name, timeout=config.http_timeout,
        )
        return cls(runner, downloader, logs, poll_interval=config.status_poll_interval)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query_status(self) -> RunState:
        return self._state

    def query_logs(self) -> list[LogLine]:
        return self._logs.lines()

    def logs_text(self) -> str:
        return self._logs.text()

    def clear_logs(self) -> None:
        self._logs.clear()

    def query_progress(self) -> DownloadProgress | None:
        return self._progress

    def executable_exists(self, db_path: str) -> bool:
        return bool(db_path and db_path.strip()) and self.runner.executable_exists(db_path.strip())

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def start(self, config: NodeConfig) -> None:
        config = config.validate()
        if self._state is not RunState.STOPPED or self._lock.locked():
            raise ConflictError(self._conflict_message("start"), code="AlreadyRunning")

        async with self._lock:
            self._transition(RunState.STARTING)
            try:
                await self.runner.spawn(config)
            except BaseException:
                self._transition(RunState.STOPPED)
                raise
            self._transition(RunState.RUNNING)
        log.info("Node running on api port %d, p2p port %d", config.api_port, config.p2p_port)

    async def stop(self) -> None:
        if self._state is not RunState.RUNNING or self._lock.locked():
            raise ConflictError(self._conflict_message("stop"), code="NotRunning")

        async with self._lock:
            self._transition(RunState.STOPPING)
            try:
                code = await self.runner.terminate()
            finally:
                self._transition(RunState.STOPPED)
        log.info("Node stopped (exit code %s)", code)

    async def check_for_update(self, db_path: str) -> None:
        """Admit an update and run it in the background.

        Returns once the supervisor is UPDATING; progress and the single
        terminal event (DownloadComplete or DownloadFailed) arrive through
        :attr:`events`.
        """
        if self._state is not RunState.STOPPED or self._lock.locked():
            raise ConflictError(self._conflict_message("update"), code="Busy")
        path = db_path.strip() if isinstance(db_path, str) else ""
        if not path:
            raise ValidationError("Database path is not set.")

        self._transition(RunState.UPDATING)
        self._update_task = asyncio.create_task(self._run_update(path), name="node-update")

    async def wait_for_update(self) -> None:
        """Block until the in-flight update (if any) has finished."""
        task = self._update_task
        if task is not None:
            await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Liveness reconciliation
    # ------------------------------------------------------------------

    def start_polling(self) -> None:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop(), name="node-status-poll")

    def reconcile(self) -> bool:
        """Correct RUNNING to STOPPED if the node died behind our back.

        Only acts in RUNNING; STARTING/STOPPING/UPDATING belong to an
        intent that is still in flight.  Returns True if state changed.
        """
        if self._state is not RunState.RUNNING:
            return False
        if self.runner.is_alive():
            return False
        log.warning("Node is no longer alive; marking as stopped")
        self._transition(RunState.STOPPED)
        return True

    async def close(self) -> None:
        """Cancel background work and stop the node if it is running."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
            self._poll_task = None
        if self._update_task is not None and not self._update_task.done():
            self._update_task.cancel()
            await asyncio.gather(self._update_task, return_exceptions=True)
        if self._state is RunState.UPDATING:
            # Task was cancelled before it ever ran, so it published nothing
            self._finish_update(DownloadFailed("Update cancelled"))
        if self._state is RunState.RUNNING:
            try:
                await self.stop()
            except NodeKeeperError:
                log.exception("Failed to stop node during shutdown")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _transition(self, new: RunState) -> None:
        old = self._state
        if new not in _LEGAL_TRANSITIONS[old]:
            raise RuntimeError(f"Illegal state transition {old.value} -> {new.value}")
        self._state = new
        log.debug("State %s -> %s", old.value, new.value)
        self.events.publish(StatusChanged(new))

    def _conflict_message(self, intent: str) -> str:
        if self._state is RunState.UPDATING:
            return f"Cannot {intent}: an update is in progress"
        if intent == "stop":
            return "No running process found"
        if intent == "update":
            return "Busy: stop the node before updating"
        return "Node is already running"

    def _on_process_exit(self, code: int | None) -> None:
        self.reconcile()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            self.reconcile()

    def _finish_update(self, outcome: DownloadComplete | DownloadFailed) -> None:
        """Return to STOPPED, then publish the single terminal event."""
        self._progress = None
        self._update_task = None
        self._transition(RunState.STOPPED)
        self.events.publish(outcome)

    async def _run_update(self, db_path: str) -> None:
        destination = self.runner.executable_path(db_path)
        try:
            log.info("Checking for updates")
            release = await self.downloader.fetch_latest_release()
            log.info("Found release %s, downloading to %s", release.version, destination)
            async for progress in self.downloader.download(release.url, destination, release.size):
                self._progress = progress
                self.events.publish(DownloadProgressed(progress))
        except asyncio.CancelledError:
            self._finish_update(DownloadFailed("Update cancelled"))
            raise
        except NodeKeeperError as exc:
            log.error("Update failed: %s", exc)
            self._finish_update(DownloadFailed(str(exc)))
        except Exception as exc:
            log.exception("Update failed unexpectedly")
            self._finish_update(DownloadFailed(f"Update failed: {exc}"))
        else:
            log.info("Download completed successfully")
            self._finish_update(DownloadComplete(release.version))
