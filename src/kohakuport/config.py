"""
KohakuPort server configuration.

This module defines the configuration dataclass for the tunnel service,
providing a centralized place for all configurable parameters.

Configuration can be modified at runtime by importing the global config
instance and updating its attributes before starting the server. The
``kohakuport serve`` command does this from its options and environment
variables.

Usage:
    from kohakuport.config import config

    config.CONVERGE_INTERVAL_SECONDS = 10
    config.LOG_LEVEL = LogLevel.DEBUG
"""

import os
from dataclasses import dataclass

from kohakuport.models.enums import LogLevel


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class PortConfig:
    """
    Tunnel service configuration.

    Attributes:
        BIND_IP: IP address to bind the API server to.
        PORT: HTTP API port.
        SOCKET_PATH: Unix socket to serve on instead of BIND_IP/PORT.
        STATE_DIR: Directory holding the persisted intent database.
        CONVERGE_INTERVAL_SECONDS: Period of the background converge loop.
        NGROK_AGENT_URL: Base URL of the local ngrok agent API.
        LOG_LEVEL: Logging verbosity level.
    """

    # -------------------------------------------------------------------------
    # Network Configuration
    # -------------------------------------------------------------------------

    BIND_IP: str = "127.0.0.1"
    PORT: int = 8010
    SOCKET_PATH: str = ""

    # -------------------------------------------------------------------------
    # Path Configuration
    # -------------------------------------------------------------------------

    STATE_DIR: str = "/tmp"  # fallback for development
    LOG_FILE: str = ""

    # -------------------------------------------------------------------------
    # Timing Configuration
    # -------------------------------------------------------------------------

    CONVERGE_INTERVAL_SECONDS: float = 5.0
    CONVERGE_TIMEOUT_SECONDS: float = 30.0
    INITIAL_CONVERGE_TIMEOUT_SECONDS: float = 5.0
    ADAPTER_TIMEOUT_SECONDS: float = 10.0
    DETECT_TIMEOUT_SECONDS: float = 2.0  # per probe step
    DETECT_DEADLINE_SECONDS: float = 3.0  # whole detection, below the initial pass deadline
    SHUTDOWN_TIMEOUT_SECONDS: float = 10.0

    # -------------------------------------------------------------------------
    # Tunnel Configuration
    # -------------------------------------------------------------------------

    TARGET_HOST: str = "localhost"  # where published container ports are reachable
    NGROK_AGENT_URL: str = "http://127.0.0.1:4040"
    FORWARDER_PREFIX: str = "kohakuport-"

    # -------------------------------------------------------------------------
    # Docker Configuration
    # -------------------------------------------------------------------------

    DOCKER_EVENTS_ENABLED: bool = True

    # -------------------------------------------------------------------------
    # Logging / Identification
    # -------------------------------------------------------------------------

    LOG_LEVEL: LogLevel = LogLevel.INFO
    EXTENSION_VERSION: str = "unknown"

    def get_state_db_path(self) -> str:
        """Get the path of the intent database, creating STATE_DIR if needed."""
        os.makedirs(self.STATE_DIR, exist_ok=True)
        return os.path.join(self.STATE_DIR, "state.db")

    def get_server_url(self) -> str:
        """Get the base URL clients use to reach the API."""
        return f"http://{self.BIND_IP}:{self.PORT}"


# Global config instance
config = PortConfig()
