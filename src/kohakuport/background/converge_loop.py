"""
Convergence background task.

Runs an initial convergence pass right away, then one every
CONVERGE_INTERVAL_SECONDS, or sooner when a pass is requested through
``ConvergenceManager.request_converge()``. Failures are logged and left to
the next pass.
"""

from kohakuport.adapters.exceptions import AdapterError
from kohakuport.services.exceptions import (
    ConvergeError,
    ConvergeTimeout,
    ManagerClosedError,
)
from kohakuport.services.manager import ConvergenceManager
from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)


async def _converge_once(manager: ConvergenceManager, timeout: float | None) -> bool:
    """Run one pass; returns False once the manager is shut down."""
    try:
        await manager.converge(timeout=timeout)
    except ManagerClosedError:
        return False
    except ConvergeTimeout as e:
        logger.warning(f"Convergence timed out: {e}")
    except ConvergeError as e:
        logger.warning(f"Convergence failed: {e}")
    except AdapterError as e:
        logger.warning(f"Convergence skipped, adapter unavailable: {e}")
    except Exception as e:
        logger.exception(f"Unexpected error during convergence: {e}")
    return True


async def run_converge_loop(
    manager: ConvergenceManager,
    interval: float,
    timeout: float | None,
    initial_timeout: float | None = None,
) -> None:
    """
    Drive periodic convergence until the manager shuts down.

    Args:
        manager: The convergence manager.
        interval: Seconds between passes when nothing requests one.
        timeout: Deadline of each periodic pass.
        initial_timeout: Deadline of the startup pass.
    """
    logger.info("Starting initial convergence")
    if not await _converge_once(manager, initial_timeout or timeout):
        return

    logger.info(f"Converge loop started (interval: {interval}s)")
    while not manager.closed:
        await manager.wait_for_trigger(interval)
        if manager.closed:
            break
        if not await _converge_once(manager, timeout):
            break

    logger.info("Converge loop stopped")
