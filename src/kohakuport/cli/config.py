"""
CLI client configuration.

Module-level settings read by the API client; the root CLI callback
overrides them from options and environment variables.
"""

HOST_ADDRESS: str = "127.0.0.1"
HOST_PORT: int = 8010
SOCKET_PATH: str = ""
OUTPUT_FORMAT: str = "table"
