"""
Docker event watcher background task.

Streams container lifecycle events from the daemon in a worker thread and
requests a convergence pass for each one, so tunnels follow container
starts and stops without waiting for the next timer tick.
"""

import asyncio
import threading

from docker.errors import DockerException

from kohakuport.docker.client import DockerContainerAdapter
from kohakuport.services.manager import ConvergenceManager
from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)

RECONNECT_DELAY_SECONDS = 5.0


def _pump_events(
    adapter: DockerContainerAdapter,
    loop: asyncio.AbstractEventLoop,
    manager: ConvergenceManager,
    holder: dict,
    stop: threading.Event,
) -> None:
    """Blocking: forward events to the loop until the stream ends."""
    stream = adapter.lifecycle_events()
    holder["stream"] = stream
    try:
        for event in stream:
            if stop.is_set():
                break
            action = event.get("Action") or event.get("status")
            actor = (event.get("Actor") or {}).get("Attributes") or {}
            logger.debug(
                f"[events] Container {actor.get('name', event.get('id', '?'))}: {action}"
            )
            loop.call_soon_threadsafe(manager.request_converge)
    finally:
        holder.pop("stream", None)


async def watch_docker_events(
    adapter: DockerContainerAdapter,
    manager: ConvergenceManager,
) -> None:
    """
    Request convergence on every container lifecycle event.

    Reconnects after RECONNECT_DELAY_SECONDS when the stream breaks. On
    cancellation the stream is closed so the worker thread exits.
    """
    loop = asyncio.get_running_loop()
    holder: dict = {}
    stop = threading.Event()

    logger.info("Docker event watcher started")
    try:
        while not manager.closed:
            try:
                await asyncio.to_thread(_pump_events, adapter, loop, manager, holder, stop)
            except (DockerException, OSError) as e:
                logger.warning(f"[events] Docker event stream broke: {e}")
            await asyncio.sleep(RECONNECT_DELAY_SECONDS)
    finally:
        stop.set()
        stream = holder.get("stream")
        if stream is not None:
            try:
                stream.close()
            except (DockerException, OSError) as e:
                logger.debug(f"[events] Error closing event stream: {e}")
        logger.info("Docker event watcher stopped")
