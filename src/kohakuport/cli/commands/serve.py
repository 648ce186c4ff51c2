"""
KohakuPort serve command: run the tunnel service.

Every option can also be set through its environment variable, which is
how container deployments configure the service.
"""

import asyncio
from typing import Annotated

import typer

from kohakuport.adapters.exceptions import AdapterError
from kohakuport.cli.output import print_error
from kohakuport.config import config
from kohakuport.models.enums import LogLevel
from kohakuport.storage.exceptions import StoreOpenError
from kohakuport.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def serve(
    bind: Annotated[
        str, typer.Option("--bind", help="Bind address", envvar="KOHAKUPORT_BIND_IP")
    ] = config.BIND_IP,
    port: Annotated[
        int, typer.Option("--port", "-p", help="API port", envvar="KOHAKUPORT_PORT")
    ] = config.PORT,
    socket_path: Annotated[
        str,
        typer.Option(
            "--socket", help="Serve on a unix socket", envvar="KOHAKUPORT_SOCKET_PATH"
        ),
    ] = config.SOCKET_PATH,
    state_dir: Annotated[
        str,
        typer.Option(
            "--state-dir",
            help="Directory for the intent database",
            envvar=["KOHAKUPORT_STATE_DIR", "NGROK_EXT_STATE_DIR"],
        ),
    ] = config.STATE_DIR,
    agent_url: Annotated[
        str,
        typer.Option("--agent-url", help="ngrok agent API URL", envvar="NGROK_AGENT_URL"),
    ] = config.NGROK_AGENT_URL,
    target_host: Annotated[
        str,
        typer.Option(
            "--target-host",
            help="Host where published ports are reachable",
            envvar="KOHAKUPORT_TARGET_HOST",
        ),
    ] = config.TARGET_HOST,
    interval: Annotated[
        float,
        typer.Option(
            "--interval",
            help="Seconds between convergence passes",
            envvar="KOHAKUPORT_CONVERGE_INTERVAL",
        ),
    ] = config.CONVERGE_INTERVAL_SECONDS,
    events: Annotated[
        bool,
        typer.Option(
            "--events/--no-events",
            help="Converge on Docker container events",
            envvar="KOHAKUPORT_DOCKER_EVENTS",
        ),
    ] = config.DOCKER_EVENTS_ENABLED,
    log_level: Annotated[
        LogLevel,
        typer.Option("--log-level", help="Log verbosity", envvar="KOHAKUPORT_LOG_LEVEL"),
    ] = config.LOG_LEVEL,
    log_file: Annotated[
        str, typer.Option("--log-file", help="Also log to file", envvar="KOHAKUPORT_LOG_FILE")
    ] = config.LOG_FILE,
    version: Annotated[
        str,
        typer.Option("--version-tag", help="Reported version", envvar="EXTENSION_VERSION"),
    ] = config.EXTENSION_VERSION,
):
    """Run the tunnel service (API server + convergence loop)."""
    from kohakuport.server.supervisor import serve as run_supervisor

    config.BIND_IP = bind
    config.PORT = port
    config.SOCKET_PATH = socket_path
    config.STATE_DIR = state_dir
    config.NGROK_AGENT_URL = agent_url
    config.TARGET_HOST = target_host
    config.CONVERGE_INTERVAL_SECONDS = interval
    config.DOCKER_EVENTS_ENABLED = events
    config.LOG_LEVEL = log_level
    config.LOG_FILE = log_file
    config.EXTENSION_VERSION = version

    # Configure logging before anything else logs (uvicorn included)
    configure_logging(config.LOG_LEVEL, config.LOG_FILE)

    try:
        asyncio.run(run_supervisor(config))
    except (StoreOpenError, AdapterError) as e:
        logger.error(f"Startup failed: {e}")
        print_error(f"Startup failed: {e}")
        raise typer.Exit(1)
