"""
Convergence Manager.

Reconciles three views of the world on every pass:

- desired state: tunnel intents from the IntentStore
- container state: running containers from the ContainerAdapter
- forwarder state: managed forwarders from the TunnelAdapter

and drives the adapters until the live endpoint table (the SessionCache)
matches the intents of running containers.

Pass Order:
===========
1. Read intents, running containers and open forwarders.
2. Drop ghost endpoints whose forwarder is no longer open remotely.
3. Close endpoints whose container stopped, whose intent was deleted, or
   whose intent changed.
4. Close orphan forwarders (managed, but no endpoint record). A forwarder
   that exactly matches a running intent without an endpoint is adopted
   instead, without any API call.
5. Open forwarders for running intents without an endpoint.

Removals always run before creations. Unchanged endpoints are not touched,
so a pass with no external change issues no open/close calls and no probes.

Concurrency:
============
- Passes are serialized by ``_pass_lock``; explicit ``converge()`` calls
  queue behind a running pass, timer/event triggers are coalesced through
  ``request_converge()``.
- Every per-container read-modify-write of the endpoint table runs inside
  ``SessionCache.hold()``, the same lock direct removals use.
- Detection for all missing endpoints of a pass runs concurrently, so one
  pass pays the detection deadline once.
- ``shutdown()`` gives a running pass half its budget, then cancels it;
  the pass also stops opening forwarders as soon as the manager closes.

Failures of single items are recorded and retried on the next pass; only a
pass where every attempted action failed, or where an adapter could not be
read at all, raises.
"""

import asyncio
import datetime
from dataclasses import dataclass, field

from kohakuport.adapters.base import ContainerAdapter, TunnelAdapter
from kohakuport.adapters.exceptions import AdapterError, TunnelError
from kohakuport.detect.protocol import ProtocolDetector
from kohakuport.models.enums import ConvergeOutcome, Protocol
from kohakuport.models.tunnel import (
    ContainerSnapshot,
    Endpoint,
    Forwarder,
    ForwarderOptions,
    TunnelIntent,
)
from kohakuport.services.exceptions import (
    ConvergeError,
    ConvergeTimeout,
    EndpointNotFoundError,
    ManagerClosedError,
)
from kohakuport.services.session import SessionCache
from kohakuport.storage.intents import IntentStore
from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Pass Report
# =============================================================================


@dataclass
class ConvergeReport:
    """What one convergence pass did."""

    started_at: datetime.datetime = field(default_factory=datetime.datetime.now)
    finished_at: datetime.datetime | None = None
    outcome: ConvergeOutcome = ConvergeOutcome.OK
    opened: list[str] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)
    adopted: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    attempted: int = 0

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def changed(self) -> bool:
        return bool(self.opened or self.closed or self.adopted or self.dropped)

    def finish(self, outcome: ConvergeOutcome | None = None) -> None:
        self.finished_at = datetime.datetime.now()
        if outcome is not None:
            self.outcome = outcome
        elif self.attempted and self.failed >= self.attempted:
            self.outcome = ConvergeOutcome.FAILED
        elif self.errors:
            self.outcome = ConvergeOutcome.PARTIAL
        else:
            self.outcome = ConvergeOutcome.OK


# =============================================================================
# ConvergenceManager Class
# =============================================================================


class ConvergenceManager:
    """
    Reconciliation engine for container tunnels.

    Attributes:
        store: Desired state.
        containers: Container runtime adapter.
        tunnels: Tunneling service adapter.
        detector: Protocol detector used before opening forwarders.
        session: Shared endpoint table (also used by API handlers).
        target_host: Host under which published container ports are reachable.
        forwarder_prefix: Name prefix of forwarders owned by this service.
    """

    def __init__(
        self,
        store: IntentStore,
        containers: ContainerAdapter,
        tunnels: TunnelAdapter,
        detector: ProtocolDetector,
        session: SessionCache,
        target_host: str = "localhost",
        forwarder_prefix: str = "kohakuport-",
    ):
        self.store = store
        self.containers = containers
        self.tunnels = tunnels
        self.detector = detector
        self.session = session
        self.target_host = target_host
        self.forwarder_prefix = forwarder_prefix

        self._pass_lock = asyncio.Lock()
        self._trigger = asyncio.Event()
        self._closed = False
        self._shutdown_done = False
        self._pass_task: asyncio.Task | None = None
        self._pass_aborted = False

        # Survives endpoint removal so UNKNOWN detections can fall back
        self._known_protocols: dict[str, Protocol] = {}
        self._container_errors: dict[str, str] = {}
        self.last_report: ConvergeReport | None = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def container_errors(self) -> dict[str, str]:
        """Last error per container, cleared when the container converges."""
        return dict(self._container_errors)

    def known_protocol(self, container_id: str) -> Protocol | None:
        return self._known_protocols.get(container_id)

    def target_for(self, intent: TunnelIntent) -> str:
        return f"{self.target_host}:{intent.target_port}"

    def forwarder_options(self, intent: TunnelIntent) -> ForwarderOptions:
        return ForwarderOptions(
            name=f"{self.forwarder_prefix}{intent.container_id}",
            url=intent.url,
            pooling_enabled=intent.pooling_enabled,
            description=intent.description,
            metadata=intent.metadata,
        )

    async def endpoints(self) -> list[Endpoint]:
        return await self.session.list()

    # =========================================================================
    # Triggers
    # =========================================================================

    def request_converge(self) -> None:
        """Ask the background loop for a pass; repeated requests coalesce."""
        self._trigger.set()

    async def wait_for_trigger(self, timeout: float) -> bool:
        """
        Wait until a pass is requested or ``timeout`` elapses.

        Returns:
            True if woken by a request, False on timeout.
        """
        try:
            await asyncio.wait_for(self._trigger.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            self._trigger.clear()

    # =========================================================================
    # Convergence
    # =========================================================================

    async def converge(self, timeout: float | None = None) -> ConvergeReport:
        """
        Run one convergence pass.

        Args:
            timeout: Pass deadline in seconds, None for no deadline.

        Returns:
            Report of the pass (also stored as ``last_report``).

        Raises:
            ConvergeTimeout: The deadline was exceeded.
            ConvergeError: Every attempted action failed.
            AdapterError: A runtime or tunneling adapter could not be read.
            ManagerClosedError: The manager has been shut down.
        """
        if self._closed:
            raise ManagerClosedError("Manager is shut down")

        async with self._pass_lock:
            if self._closed:
                raise ManagerClosedError("Manager is shut down")

            report = ConvergeReport()
            # Shutdown cancels this task if the pass outlives its grace period
            self._pass_task = asyncio.create_task(self._run_pass(report))
            try:
                await asyncio.wait_for(self._pass_task, timeout)
            except asyncio.CancelledError:
                if not self._pass_aborted:
                    raise
                report.finish(ConvergeOutcome.FAILED)
                self.last_report = report
                logger.warning("[converge] Pass aborted by shutdown")
                raise ManagerClosedError("Manager shut down during the pass") from None
            except asyncio.TimeoutError as e:
                report.finish(ConvergeOutcome.TIMEOUT)
                self.last_report = report
                logger.warning(f"[converge] Pass exceeded {timeout}s deadline")
                raise ConvergeTimeout(timeout) from e
            except AdapterError as e:
                report.errors["*"] = str(e)
                report.finish(ConvergeOutcome.FAILED)
                self.last_report = report
                logger.error(f"[converge] Adapter unavailable, pass aborted: {e}")
                raise

            report.finish()
            self.last_report = report
            self._log_report(report)

            if report.outcome == ConvergeOutcome.FAILED:
                raise ConvergeError(report)
            return report

    async def _run_pass(self, report: ConvergeReport) -> None:
        intents = {intent.container_id: intent for intent in self.store.list()}
        containers = [c for c in await self.containers.list_running() if c.running]
        forwarders = await self.tunnels.list_open()

        running: dict[str, ContainerSnapshot] = {}
        for container_id in intents:
            container = self._match_container(container_id, containers)
            if container is not None:
                running[container_id] = container

        await self._drop_ghosts(forwarders, report)
        closed = await self._close_stale(intents, running, report)
        await self._close_orphans(forwarders, intents, running, report, closed)
        await self._open_missing(intents, running, report)

        await self._prune_container_state()

    @staticmethod
    def _match_container(
        container_id: str, containers: list[ContainerSnapshot]
    ) -> ContainerSnapshot | None:
        for container in containers:
            if container.matches(container_id):
                return container
        return None

    # -------------------------------------------------------------------------
    # Removals
    # -------------------------------------------------------------------------

    async def _drop_ghosts(
        self, forwarders: list[Forwarder], report: ConvergeReport
    ) -> None:
        """Forget endpoints whose forwarder no longer exists remotely."""
        open_ids = {f.id for f in forwarders}
        async with self.session.hold() as table:
            for container_id, endpoint in list(table.items()):
                if endpoint.forwarder_id not in open_ids:
                    logger.warning(
                        f"[converge] Forwarder {endpoint.forwarder_id} for "
                        f"{container_id} vanished remotely, dropping record"
                    )
                    del table[container_id]
                    report.dropped.append(container_id)

    def _stale_reason(
        self,
        container_id: str,
        endpoint: Endpoint,
        intents: dict[str, TunnelIntent],
        running: dict[str, ContainerSnapshot],
    ) -> str | None:
        intent = intents.get(container_id)
        if intent is None:
            return "intent deleted"
        if container_id not in running:
            return "container not running"
        if not endpoint.satisfies(intent):
            return "intent changed"
        return None

    async def _close_stale(
        self,
        intents: dict[str, TunnelIntent],
        running: dict[str, ContainerSnapshot],
        report: ConvergeReport,
    ) -> set[str]:
        """Close endpoints that no longer match; returns the closed forwarder ids."""
        closed: set[str] = set()
        async with self.session.hold() as table:
            candidates = list(table.items())

        for container_id, endpoint in candidates:
            reason = self._stale_reason(container_id, endpoint, intents, running)
            if reason is None:
                continue

            async with self.session.hold() as table:
                # A direct removal may have won the race
                if table.get(container_id) is not endpoint:
                    continue

                report.attempted += 1
                try:
                    await self.tunnels.close(endpoint.forwarder_id)
                except TunnelError as e:
                    self._record_error(report, container_id, f"close failed: {e}")
                    continue

                del table[container_id]
                report.closed.append(container_id)
                closed.add(endpoint.forwarder_id)
                logger.info(
                    f"[converge] Closed tunnel {endpoint.forwarder_url} "
                    f"for {container_id} ({reason})"
                )

        return closed

    async def _close_orphans(
        self,
        forwarders: list[Forwarder],
        intents: dict[str, TunnelIntent],
        running: dict[str, ContainerSnapshot],
        report: ConvergeReport,
        already_closed: set[str],
    ) -> None:
        async with self.session.hold() as table:
            recorded = {endpoint.forwarder_id for endpoint in table.values()}
        recorded |= already_closed

        for forwarder in forwarders:
            if forwarder.id in recorded:
                continue

            if await self._try_adopt(forwarder, intents, running, report):
                continue

            report.attempted += 1
            key = forwarder.container_id or forwarder.id
            try:
                await self.tunnels.close(forwarder.id)
            except TunnelError as e:
                self._record_error(report, key, f"orphan close failed: {e}")
                continue

            report.closed.append(key)
            logger.info(f"[converge] Closed orphan forwarder {forwarder.id}")

    async def _try_adopt(
        self,
        forwarder: Forwarder,
        intents: dict[str, TunnelIntent],
        running: dict[str, ContainerSnapshot],
        report: ConvergeReport,
    ) -> bool:
        """Record a leftover forwarder that already implements a running intent."""
        container_id = forwarder.container_id
        intent = intents.get(container_id) if container_id else None
        if intent is None or container_id not in running:
            return False
        if not forwarder.protocol.is_known or forwarder.target != self.target_for(intent):
            return False
        if intent.protocol_override and intent.protocol_override != forwarder.protocol:
            return False
        if intent.url and intent.url.split("://", 1)[-1].rstrip("/") not in forwarder.url:
            return False

        endpoint = Endpoint(
            container_id=container_id,
            target_port=intent.target_port,
            forwarder_id=forwarder.id,
            forwarder_url=forwarder.url,
            protocol=forwarder.protocol,
            target=forwarder.target,
            url_requested=intent.url,
            pooling_enabled=intent.pooling_enabled,
        )
        async with self.session.hold() as table:
            if container_id in table:
                return False
            table[container_id] = endpoint
            self._known_protocols[container_id] = forwarder.protocol

        report.adopted.append(container_id)
        logger.info(f"[converge] Adopted existing forwarder {forwarder.url} for {container_id}")
        return True

    # -------------------------------------------------------------------------
    # Creations
    # -------------------------------------------------------------------------

    async def _open_missing(
        self,
        intents: dict[str, TunnelIntent],
        running: dict[str, ContainerSnapshot],
        report: ConvergeReport,
    ) -> None:
        pending: list[tuple[TunnelIntent, ContainerSnapshot, str]] = []
        for container_id, intent in intents.items():
            container = running.get(container_id)
            if container is None:
                continue
            if await self.session.get(container_id) is not None:
                continue

            target = self.target_for(intent)
            if container.published_ports and intent.target_port not in container.published_ports:
                logger.warning(
                    f"[converge] Container {container.name} does not publish port "
                    f"{intent.target_port} (published: {list(container.published_ports)})"
                )
            pending.append((intent, container, target))

        if not pending:
            return

        # Probe all targets at once so the detection deadline is paid once per pass
        protocols = await asyncio.gather(
            *(self._resolve_protocol(intent, target) for intent, _, target in pending)
        )

        for (intent, container, target), protocol in zip(pending, protocols):
            container_id = intent.container_id
            async with self.session.hold() as table:
                if self._closed:
                    logger.info("[converge] Manager shutting down, not opening more tunnels")
                    return
                if container_id in table:
                    continue

                report.attempted += 1
                try:
                    forwarder = await self.tunnels.open(
                        target, protocol, self.forwarder_options(intent)
                    )
                except TunnelError as e:
                    self._record_error(report, container_id, f"open failed: {e}")
                    continue

                table[container_id] = Endpoint(
                    container_id=container_id,
                    target_port=intent.target_port,
                    forwarder_id=forwarder.id,
                    forwarder_url=forwarder.url,
                    protocol=protocol,
                    target=target,
                    url_requested=intent.url,
                    pooling_enabled=intent.pooling_enabled,
                )
                self._known_protocols[container_id] = protocol
                self._container_errors.pop(container_id, None)

            report.opened.append(container_id)
            logger.info(
                f"[converge] Opened {protocol.value} tunnel {forwarder.url} -> "
                f"{target} for {container.name}"
            )

    async def _resolve_protocol(self, intent: TunnelIntent, target: str) -> Protocol:
        if intent.protocol_override:
            return intent.protocol_override

        detected = await self.detector.detect(target)
        if detected.is_known:
            return detected

        fallback = self._known_protocols.get(intent.container_id, Protocol.TCP)
        logger.info(
            f"[converge] Could not detect protocol at {target} for "
            f"{intent.container_id}, using {fallback.value}"
        )
        return fallback

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def _record_error(
        self, report: ConvergeReport, container_id: str, message: str
    ) -> None:
        report.errors[container_id] = message
        self._container_errors[container_id] = message
        logger.warning(f"[converge] {container_id}: {message} (retrying next pass)")

    async def _prune_container_state(self) -> None:
        """Forget errors and remembered protocols of containers without an intent."""
        async with self.session.hold():
            for state in (self._container_errors, self._known_protocols):
                for container_id in list(state):
                    if container_id not in self.store:
                        del state[container_id]

    @staticmethod
    def _log_report(report: ConvergeReport) -> None:
        if not report.changed and not report.errors:
            logger.trace("[converge] Pass complete, nothing to do")
            return
        logger.info(
            f"[converge] Pass {report.outcome.value}: "
            f"opened={len(report.opened)} closed={len(report.closed)} "
            f"adopted={len(report.adopted)} dropped={len(report.dropped)} "
            f"failed={report.failed}"
        )

    # =========================================================================
    # Direct Operations (API fast path)
    # =========================================================================

    async def remove_endpoint(self, container_id: str) -> dict[str, Endpoint]:
        """
        Close a container's forwarder now and forget its endpoint.

        The intent is left alone, so the next pass re-creates the tunnel
        unless the intent is deleted too.

        Returns:
            The endpoint table after the removal.

        Raises:
            EndpointNotFoundError: No endpoint exists for the container.
            TunnelError: The forwarder could not be closed; the record stays.
        """
        async with self.session.hold() as table:
            endpoint = table.get(container_id)
            if endpoint is None:
                raise EndpointNotFoundError(container_id)

            logger.info(f"Removing tunnel for container {container_id}")
            await self.tunnels.close(endpoint.forwarder_id)
            del table[container_id]
            return dict(table)

    async def cancel_intent(self, container_id: str) -> dict[str, Endpoint]:
        """
        Delete a container's intent and close its forwarder.

        If closing fails the endpoint is left for the next pass, which sees
        no intent and closes it.

        Raises:
            StorePersistenceError: The intent could not be deleted durably.
        """
        self.store.delete(container_id)
        try:
            await self.remove_endpoint(container_id)
        except EndpointNotFoundError:
            pass
        except TunnelError as e:
            logger.warning(f"Close of {container_id} failed, next pass retries: {e}")
            self.request_converge()

        # Under the cache lock so a pass recording this container cannot re-add them
        async with self.session.hold() as table:
            self._known_protocols.pop(container_id, None)
            self._container_errors.pop(container_id, None)
            return dict(table)

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self, timeout: float = 10.0) -> list[Exception]:
        """
        Stop accepting passes and close every live forwarder.

        A running pass gets half of ``timeout`` to finish. After that it is
        cancelled, and every managed forwarder still listed by the tunneling
        service is closed too, including one the aborted pass opened but did
        not record. Best effort within ``timeout``: errors are collected and
        logged, and the deadline is never extended. Calling it again is a
        no-op.

        Returns:
            Errors raised while closing forwarders.
        """
        if self._shutdown_done:
            return []
        self._closed = True
        self._shutdown_done = True
        self._trigger.set()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        errors: list[Exception] = []

        # Let a running pass finish, but keep half the budget for closing
        try:
            await asyncio.wait_for(self._pass_lock.acquire(), timeout / 2)
            pass_lock_held = True
        except asyncio.TimeoutError:
            pass_lock_held = await self._abort_pass(deadline)

        try:
            remaining = max(deadline - loop.time(), 0.0)
            await asyncio.wait_for(self._close_all(errors), remaining)
        except asyncio.TimeoutError:
            logger.warning(f"Shutdown deadline of {timeout}s exceeded")
            errors.append(TimeoutError("shutdown deadline exceeded"))
        finally:
            if pass_lock_held:
                self._pass_lock.release()

        for error in errors:
            logger.warning(f"Error during shutdown: {error}")
        return errors

    async def _abort_pass(self, deadline: float) -> bool:
        """
        Cancel the running pass and wait for it to release the pass lock.

        Returns:
            True if the pass lock is now held by the caller.
        """
        task = self._pass_task
        if task is not None and not task.done():
            logger.warning("Running convergence pass did not finish, cancelling it")
            self._pass_aborted = True
            task.cancel()

        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                self._pass_lock.acquire(), max(deadline - loop.time(), 0.0)
            )
            return True
        except asyncio.TimeoutError:
            logger.warning("Convergence pass did not stop, closing anyway")
            return False

    async def _close_all(self, errors: list[Exception]) -> None:
        async with self.session.hold() as table:
            endpoints = list(table.items())
            if endpoints:
                logger.info(f"Closing {len(endpoints)} tunnel(s) before exit")
                results = await asyncio.gather(
                    *(self.tunnels.close(ep.forwarder_id) for _, ep in endpoints),
                    return_exceptions=True,
                )
                for (container_id, _), result in zip(endpoints, results):
                    if isinstance(result, Exception):
                        errors.append(result)
                    else:
                        del table[container_id]

            if self._pass_aborted:
                recorded = {ep.forwarder_id for ep in table.values()}
                await self._close_unrecorded(errors, recorded)

    async def _close_unrecorded(
        self, errors: list[Exception], recorded: set[str]
    ) -> None:
        """Close managed forwarders an aborted pass may have left behind."""
        try:
            forwarders = await self.tunnels.list_open()
        except AdapterError as e:
            errors.append(e)
            return

        forwarders = [f for f in forwarders if f.id not in recorded]
        if not forwarders:
            return
        logger.info(f"Closing {len(forwarders)} unrecorded forwarder(s) before exit")
        results = await asyncio.gather(
            *(self.tunnels.close(f.id) for f in forwarders),
            return_exceptions=True,
        )
        errors.extend(r for r in results if isinstance(r, Exception))
