"""Node lifecycle & update supervisor.

Exposes the node control surface as MCP tools:
  - start_node / stop_node:  run the node (SIGTERM → SIGKILL on stop)
  - check_and_download_update: fetch the latest binary in the background
  - get_process_status / get_download_progress: poll state
  - get_logs / clear_logs:   read the last 1000 lines of node output

Can run standalone:
    python -m node_keeper.process_manager
"""

from node_keeper.process_manager.runner import ProcessRunner
from node_keeper.process_manager.server import create_server
from node_keeper.process_manager.supervisor import LifecycleSupervisor

__all__ = ["LifecycleSupervisor", "ProcessRunner", "create_server"]
