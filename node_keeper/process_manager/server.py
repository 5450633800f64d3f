"""MCP server exposing the node control surface over streamable HTTP."""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from node_keeper.config import DEFAULT_PORT, DataPathStore
from node_keeper.errors import NodeKeeperError
from node_keeper.models import NodeConfig, RunState
from node_keeper.process_manager.supervisor import LifecycleSupervisor


def _error(exc: NodeKeeperError) -> dict:
    return {"ok": False, "error": str(exc)}


def create_server(
    supervisor: LifecycleSupervisor,
    data_paths: DataPathStore,
    port: int = DEFAULT_PORT,
) -> FastMCP:
    """Create and configure the node-keeper MCP server."""

    sv = supervisor

    mcp = FastMCP(
        name="node-keeper",
        instructions=(
            "Controls a single local node process. Use start_node/stop_node to run it, "
            "check_and_download_update to fetch the latest binary, get_process_status "
            "and get_download_progress to poll state, and get_logs to read its output."
        ),
        host="127.0.0.1",
        port=port,
        stateless_http=True,
    )

    # ------------------------------------------------------------------
    # Data path
    # ------------------------------------------------------------------
    @mcp.tool()
    async def get_default_data_path() -> str:
        """Return the default data directory for the node."""
        return data_paths.default()

    @mcp.tool()
    async def get_current_data_path() -> str:
        """Return the data directory currently selected for the node."""
        return data_paths.current()

    @mcp.tool()
    async def set_custom_data_path(path: str) -> dict:
        """Select and persist a new data directory.

        Refused while the node is running or updating.
        """
        if sv.query_status() is not RunState.STOPPED:
            return {"ok": False, "error": "Cannot change the data path while the node is busy"}
        try:
            return {"ok": True, "path": data_paths.set(path)}
        except (ValueError, OSError) as exc:
            return {"ok": False, "error": str(exc)}

    @mcp.tool()
    async def check_executable_exists(db_path: str) -> bool:
        """Return True if the node binary is present in ``db_path``."""
        return sv.executable_exists(db_path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @mcp.tool()
    async def start_node(db_path: str, api_port: int | str, p2p_port: int | str) -> dict:
        """Start the node.

        Args:
            db_path: Data directory passed as ``--db``; the binary lives here.
            api_port: API port (1-65535).
            p2p_port: P2P port (1-65535).
        """
        try:
            config = NodeConfig.parse(db_path, api_port, p2p_port)
            await sv.start(config)
        except NodeKeeperError as exc:
            return _error(exc)
        return {"ok": True, "status": sv.query_status().value}

    @mcp.tool()
    async def stop_node() -> dict:
        """Stop the node: SIGTERM, then SIGKILL after the grace period."""
        try:
            await sv.stop()
        except NodeKeeperError as exc:
            return _error(exc)
        return {"ok": True, "status": sv.query_status().value}

    @mcp.tool()
    async def check_and_download_update(db_path: str) -> dict:
        """Download the latest node binary into ``db_path``.

        Returns as soon as the update has started; poll
        get_download_progress and get_process_status for the outcome.
        """
        try:
            await sv.check_for_update(db_path)
        except NodeKeeperError as exc:
            return _error(exc)
        return {"ok": True, "status": sv.query_status().value}

    # ------------------------------------------------------------------
    # Status & logs
    # ------------------------------------------------------------------
    @mcp.tool()
    async def get_process_status() -> dict:
        """Return whether the node is running, plus the detailed state."""
        state = sv.query_status()
        return {"running": state is RunState.RUNNING, "status": state.value}

    @mcp.tool()
    async def get_download_progress() -> dict:
        """Return the in-flight download progress, or {} when idle."""
        progress = sv.query_progress()
        if progress is None:
            return {}
        return {
            "current": progress.bytes_received,
            "total": progress.bytes_total,
            "percent": progress.percent,
        }

    @mcp.tool()
    async def get_logs() -> str:
        """Return the full buffered node output (last 1000 lines)."""
        return sv.logs_text()

    @mcp.tool()
    async def clear_logs() -> dict:
        """Discard all buffered node output."""
        sv.clear_logs()
        return {"ok": True}

    return mcp
