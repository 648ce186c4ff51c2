"""
Process supervisor and composition root.

Wires the store, adapters, session cache and manager, then runs the API
server and the background tasks as independent tasks under one stop
signal. Whichever finishes first (a signal, the server exiting, or a
background task dying) starts the shutdown sequence, which runs exactly
once:

1. Stop accepting HTTP requests.
2. Shut the manager down, closing every open forwarder.
3. Cancel the background tasks and wait for the server to exit.
4. Close the adapters and the store.
"""

import asyncio
import contextlib
import os
import signal
from dataclasses import dataclass

import uvicorn

from kohakuport.adapters.exceptions import AdapterError
from kohakuport.background.converge_loop import run_converge_loop
from kohakuport.background.docker_events import watch_docker_events
from kohakuport.config import PortConfig
from kohakuport.detect.protocol import ProtocolDetector
from kohakuport.docker.client import DockerContainerAdapter
from kohakuport.models.enums import LogLevel
from kohakuport.server.app import create_app
from kohakuport.server.state import PortServices
from kohakuport.services.manager import ConvergenceManager
from kohakuport.services.session import SessionCache
from kohakuport.storage.intents import IntentStore
from kohakuport.tunnel.ngrok_agent import NgrokAgentAdapter
from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)

UVICORN_LEVELS = {
    LogLevel.FULL: "debug",
    LogLevel.DEBUG: "debug",
    LogLevel.INFO: "info",
    LogLevel.WARNING: "warning",
}


class _Server(uvicorn.Server):
    """uvicorn server that leaves signal handling to the supervisor."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


@dataclass
class Runtime:
    """Long-lived objects built by the composition root."""

    services: PortServices
    docker: DockerContainerAdapter
    ngrok: NgrokAgentAdapter


async def build_runtime(cfg: PortConfig) -> Runtime:
    """
    Build and check every dependency.

    Raises:
        StoreOpenError: The intent store cannot be opened.
        AdapterUnavailable: Docker cannot be reached.
        ServiceUnavailable: The ngrok agent cannot be reached.
    """
    store = IntentStore(cfg.get_state_db_path())
    store.open()

    docker_adapter = DockerContainerAdapter(timeout=cfg.ADAPTER_TIMEOUT_SECONDS)
    ngrok = NgrokAgentAdapter(
        agent_url=cfg.NGROK_AGENT_URL,
        prefix=cfg.FORWARDER_PREFIX,
        timeout=cfg.ADAPTER_TIMEOUT_SECONDS,
    )
    try:
        forwarders = await ngrok.list_open()
    except AdapterError:
        await ngrok.aclose()
        docker_adapter.close()
        store.close()
        raise
    logger.info(
        f"ngrok agent reachable at {cfg.NGROK_AGENT_URL} "
        f"({len(forwarders)} managed forwarder(s) open)"
    )

    session = SessionCache()
    manager = ConvergenceManager(
        store=store,
        containers=docker_adapter,
        tunnels=ngrok,
        detector=ProtocolDetector(
            timeout=cfg.DETECT_TIMEOUT_SECONDS, deadline=cfg.DETECT_DEADLINE_SECONDS
        ),
        session=session,
        target_host=cfg.TARGET_HOST,
        forwarder_prefix=cfg.FORWARDER_PREFIX,
    )
    services = PortServices(
        store=store,
        session=session,
        manager=manager,
        version=cfg.EXTENSION_VERSION,
        converge_timeout=cfg.CONVERGE_TIMEOUT_SECONDS,
    )
    return Runtime(services=services, docker=docker_adapter, ngrok=ngrok)


def _build_server(cfg: PortConfig, runtime: Runtime) -> _Server:
    app = create_app(runtime.services)
    if cfg.SOCKET_PATH:
        # Remove any stale socket file from a previous run
        with contextlib.suppress(FileNotFoundError):
            os.remove(cfg.SOCKET_PATH)
        logger.info(f"Starting listening on socket {cfg.SOCKET_PATH}")
        uv_config = uvicorn.Config(
            app,
            uds=cfg.SOCKET_PATH,
            log_level=UVICORN_LEVELS.get(cfg.LOG_LEVEL, "info"),
            log_config=None,  # Disable uvicorn's default logging config (use loguru)
        )
    else:
        logger.info(f"Starting API server on {cfg.BIND_IP}:{cfg.PORT}")
        uv_config = uvicorn.Config(
            app,
            host=cfg.BIND_IP,
            port=cfg.PORT,
            log_level=UVICORN_LEVELS.get(cfg.LOG_LEVEL, "info"),
            log_config=None,
        )
    return _Server(uv_config)


class Supervisor:
    """Runs the server and background tasks and shuts them down once."""

    def __init__(self, cfg: PortConfig, runtime: Runtime, server: uvicorn.Server):
        self.cfg = cfg
        self.runtime = runtime
        self.server = server
        self.stop_event = asyncio.Event()
        self._shutdown_started = False

    def request_stop(self) -> None:
        self.stop_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.request_stop)

    async def run(self) -> None:
        self._install_signal_handlers()
        manager = self.runtime.services.manager

        server_task = asyncio.create_task(self.server.serve(), name="api-server")
        stop_task = asyncio.create_task(self.stop_event.wait(), name="stop-signal")
        background = [
            asyncio.create_task(
                run_converge_loop(
                    manager,
                    interval=self.cfg.CONVERGE_INTERVAL_SECONDS,
                    timeout=self.cfg.CONVERGE_TIMEOUT_SECONDS,
                    initial_timeout=self.cfg.INITIAL_CONVERGE_TIMEOUT_SECONDS,
                ),
                name="converge-loop",
            )
        ]
        if self.cfg.DOCKER_EVENTS_ENABLED:
            background.append(
                asyncio.create_task(
                    watch_docker_events(self.runtime.docker, manager),
                    name="docker-events",
                )
            )

        done, _ = await asyncio.wait(
            [server_task, stop_task, *background],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in done:
            if task is stop_task:
                logger.info("Shutting down due to stop signal")
            elif task.cancelled():
                logger.warning(f"Task {task.get_name()} was cancelled")
            elif task.exception() is not None:
                logger.error(f"Task {task.get_name()} failed: {task.exception()}")
            else:
                logger.info(f"Task {task.get_name()} finished, shutting down")

        await self.shutdown(server_task, stop_task, background)

        if server_task.done() and not server_task.cancelled():
            error = server_task.exception()
            if error is not None:
                raise error

    async def shutdown(
        self,
        server_task: asyncio.Task,
        stop_task: asyncio.Task,
        background: list[asyncio.Task],
    ) -> None:
        if self._shutdown_started:
            return
        self._shutdown_started = True

        self.server.should_exit = True

        errors = await self.runtime.services.manager.shutdown(
            timeout=self.cfg.SHUTDOWN_TIMEOUT_SECONDS
        )
        if errors:
            logger.warning(f"Error shutting down manager: {len(errors)} close failure(s)")

        for task in (*background, stop_task):
            task.cancel()
        await asyncio.gather(*background, stop_task, return_exceptions=True)

        try:
            await asyncio.wait_for(
                asyncio.shield(server_task), self.cfg.SHUTDOWN_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            logger.warning("API server did not stop in time, cancelling")
            server_task.cancel()
            await asyncio.gather(server_task, return_exceptions=True)
        except Exception as e:
            logger.error(f"API server exited with error: {e}")

        await self.runtime.ngrok.aclose()
        self.runtime.docker.close()
        self.runtime.services.store.close()
        logger.info("Shutdown complete")


async def serve(cfg: PortConfig) -> None:
    """Build everything and run until stopped."""
    runtime = await build_runtime(cfg)
    server = _build_server(cfg, runtime)
    await Supervisor(cfg, runtime, server).run()
