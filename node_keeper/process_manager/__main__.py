"""Run node-keeper as a local MCP daemon over HTTP.

Usage:
    python -m node_keeper.process_manager [--port PORT] [--env FILE]

The daemon owns the node process for its whole lifetime; shutting the
daemon down stops the node.
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
from logging.handlers import RotatingFileHandler
from pathlib import Path

import uvicorn

from node_keeper.config import Config, DataPathStore
from node_keeper.process_manager.server import create_server
from node_keeper.process_manager.supervisor import LifecycleSupervisor

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [node-keeper] %(levelname)s %(name)s: %(message)s"


async def _run(config: Config) -> None:
    supervisor = LifecycleSupervisor.from_config(config)
    data_paths = DataPathStore(config.settings_path, config.default_data_path)
    server = create_server(supervisor=supervisor, data_paths=data_paths, port=config.port)

    supervisor.start_polling()

    app = server.streamable_http_app()
    uvi = uvicorn.Server(
        uvicorn.Config(app, host="127.0.0.1", port=config.port, log_level="info"),
    )

    # Use _serve() instead of serve() so uvicorn does not install its own
    # signal handlers over ours.
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Windows event loops; Ctrl+C still raises KeyboardInterrupt
            pass

    serve_task = asyncio.create_task(uvi._serve())
    try:
        await shutdown.wait()
        log.info("Signal received, shutting down")
        uvi.should_exit = True
        await serve_task
    finally:
        log.info("Stopping node")
        await supervisor.close()


def _setup_logging(config: Config) -> None:
    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
    config.log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        config.log_dir / "node-keeper.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)


def main() -> None:
    parser = argparse.ArgumentParser(description="Local supervisor for the node process")
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port to listen on (default: NODE_KEEPER_PORT or 8901)",
    )
    parser.add_argument(
        "--env", type=Path, default=None,
        help="Path to a .env file with NODE_KEEPER_* settings",
    )
    args = parser.parse_args()

    config = Config.from_env(args.env)
    if args.port is not None:
        config = dataclasses.replace(config, port=args.port)

    _setup_logging(config)
    log.info("Starting node-keeper on http://127.0.0.1:%d/mcp", config.port)
    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
