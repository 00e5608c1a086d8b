# orchestrator.py
"""Hybrid scan: ARP discovery followed by paced liveness probes.

The orchestrator listens to an ``AddressDiscoveryProbe``, queues one liveness
probe per discovered address, enriches every result through a
``DeviceInfoResolver`` and, once discovery has completed and no probe is queued
or outstanding, publishes a summary and the inventory sorted by address.

All orchestration runs on the event loop thread, so state is mutated only from
callbacks and never concurrently.
"""
import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Set, Union

from device import Device, DeviceInfo, PendingProbe, ScanConfig, ScanReport
from errors import DiscoveryError
from events import EventChannel, ProbeEvent, ScanEvent, SubscriptionScope
from liveness import LivenessSession, PingSession
from probes.arp_scan import ArpScanProbe
from probes.base import AddressDiscoveryProbe
from resolver import DeviceInfoResolver
from utils import broadcast_address, ip_sort_key

logger = logging.getLogger(__name__)


class _ScanRun:
    """State of one run. Created by ``start`` and dropped when it returns."""

    def __init__(self, config: ScanConfig, session: LivenessSession, resolver: DeviceInfoResolver,
                 loop: asyncio.AbstractEventLoop):
        self.config = config
        self.session = session
        self.resolver = resolver
        self.loop = loop
        self.pending: Deque[PendingProbe] = deque()
        self.in_flight: Set[str] = set()
        self.completed: Dict[str, Device] = {}
        self.known_link_address: Dict[str, Optional[str]] = {}
        self.discovery_done = False
        # Set once the discovery probe's start() has returned without error
        self.discovery_returned = False
        # Results held back until discovery has returned
        self.held: List[Device] = []
        self.last_dispatch: Optional[float] = None
        self.started_at = time.monotonic()
        self.timer: Optional[asyncio.TimerHandle] = None
        self.tasks: Set[asyncio.Task] = set()
        self.scope: Optional[SubscriptionScope] = None
        self.finished = False
        self.done: asyncio.Future = loop.create_future()

    def is_queued(self, address: str) -> bool:
        return any(probe.address == address for probe in self.pending)

    def release(self) -> None:
        """Releases the run-owned resources. Safe to call more than once."""
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        if self.scope is not None:
            self.scope.release()
        if not self.session.closed:
            self.session.close()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


class HybridScanOrchestrator:
    """Coordinates discovery, paced liveness probing and inventory assembly.

    Events published on ``self.events`` (payload in brackets):
        DISCOVERY_RESPONSE [PendingProbe], DISCOVERY_COMPLETE [ScanReport],
        PROBE_REACHABLE [address], DEVICE_RESOLVED [Device],
        SCAN_COMPLETE [ScanReport], INVENTORY [list of Device].

    A successful run publishes exactly one SCAN_COMPLETE followed by exactly one
    INVENTORY. A failed run publishes neither. DEVICE_RESOLVED and
    PROBE_REACHABLE are held back until the discovery probe has returned, so a
    run whose discovery fails publishes no per-device results either.
    """

    def __init__(self, discovery_probe: AddressDiscoveryProbe,
                 session_factory: Callable[[], LivenessSession] = PingSession,
                 resolver: Optional[DeviceInfoResolver] = None):
        self.discovery_probe = discovery_probe
        self.session_factory = session_factory
        self.resolver = resolver
        self.events = EventChannel(ScanEvent)
        self._run: Optional[_ScanRun] = None

    @property
    def running(self) -> bool:
        return self._run is not None

    async def start(self, config: Union[ScanConfig, Mapping[str, Any]]) -> List[Device]:
        """Runs one hybrid scan and returns the inventory.

        Raises:
            ConfigurationError: missing or malformed configuration.
            DiscoveryError: the discovery probe failed; no inventory is published.
            RuntimeError: a scan is already running on this orchestrator.
        """
        if self._run is not None:
            raise RuntimeError("A scan is already running")
        scan_config = config if isinstance(config, ScanConfig) else ScanConfig.from_mapping(config)
        interface = scan_config.network_interface
        broadcast = broadcast_address(interface.cidr)

        resolver = self.resolver or DeviceInfoResolver(timeout_ms=scan_config.timeout_ms)
        run = _ScanRun(scan_config, self.session_factory(), resolver, asyncio.get_running_loop())
        self._run = run
        self._log(run, f"Hybrid scan on {interface.name} ({interface.cidr}), "
                       f"timeout {scan_config.timeout_ms}ms, interval {scan_config.interval_ms}ms")
        try:
            with self.discovery_probe.events.scope() as scope:
                run.scope = scope
                scope.subscribe(ProbeEvent.RESPONSE, self._on_discovery_response)
                scope.subscribe(ProbeEvent.COMPLETE, self._on_discovery_complete)
                try:
                    await self.discovery_probe.start(interface, broadcast, scan_config.timeout_ms)
                except DiscoveryError as e:
                    logger.error(f"Discovery failed: {e}")
                    raise
                except Exception as e:
                    logger.error(f"Discovery failed: {e}")
                    raise DiscoveryError(str(e)) from e
                self._on_discovery_returned(run)
                return await run.done
        finally:
            self._abort(run)
            self._run = None

    def schedule(self, address: str, link_address: Optional[str] = None) -> None:
        """Admits ``address`` for probing unless it is already queued, in flight or done.

        The latest link address always wins, even for addresses already admitted.
        """
        run = self._active_run()
        if run.finished:
            logger.debug(f"Ignoring {address}: scan already finalized")
            return
        if address in run.in_flight or address in run.completed or run.is_queued(address):
            previous = run.known_link_address.get(address)
            if previous != link_address:
                logger.debug(f"Link address of {address} changed: {previous} -> {link_address}")
            run.known_link_address[address] = link_address
            return
        run.pending.append(PendingProbe(address, link_address))
        run.known_link_address[address] = link_address
        self.dispatch()

    def dispatch(self) -> None:
        """Starts queued probes according to the pacing policy.

        interval 0: every queued address is dispatched at once.
        interval > 0: one probe in flight at a time, dispatches at least
        ``interval_ms`` apart.
        """
        run = self._active_run()
        interval_ms = run.config.interval_ms
        while run.pending and not run.finished:
            if interval_ms > 0 and run.in_flight:
                return
            now = time.monotonic()
            if interval_ms > 0 and run.last_dispatch is not None:
                elapsed_ms = (now - run.last_dispatch) * 1000
                if elapsed_ms < interval_ms:
                    if run.timer is None:
                        run.timer = run.loop.call_later(
                            (interval_ms - elapsed_ms) / 1000, self._on_timer, run
                        )
                    return
            probe = run.pending.popleft()
            run.in_flight.add(probe.address)
            run.last_dispatch = now
            self._log(run, f"Probing {probe.address}")
            task = run.loop.create_task(self._probe(run, probe.address))
            run.tasks.add(task)
            task.add_done_callback(run.tasks.discard)
            if interval_ms > 0:
                return

    def _on_timer(self, run: _ScanRun) -> None:
        run.timer = None
        if run is self._run:
            self.dispatch()

    def _on_discovery_response(self, payload: PendingProbe) -> None:
        run = self._run
        if run is None or run.finished:
            return
        self.events.emit(ScanEvent.DISCOVERY_RESPONSE, payload)
        self.schedule(payload.address, payload.link_address)

    def _on_discovery_complete(self, report: ScanReport) -> None:
        run = self._run
        if run is None or run.finished:
            return
        if run.discovery_done:
            logger.warning("Discovery reported completion more than once")
            return
        self._log(run, f"Discovery complete: {report.count} hosts in {report.elapsed_ms}ms")
        self.events.emit(ScanEvent.DISCOVERY_COMPLETE, report)
        run.discovery_done = True
        self._check_completion(run)

    def _on_discovery_returned(self, run: _ScanRun) -> None:
        """Publishes held results once discovery can no longer fail."""
        run.discovery_returned = True
        if not run.discovery_done:
            logger.warning("Discovery returned without reporting completion, closing the discovery phase")
            run.discovery_done = True
        held, run.held = run.held, []
        for device in held:
            self._publish_result(device)
        self._check_completion(run)

    async def _probe(self, run: _ScanRun, address: str) -> None:
        try:
            reachable = await run.session.probe(address, run.config.timeout_ms)
        except Exception as e:  # pylint: disable=broad-except
            logger.warning(f"Liveness probe for {address} failed, treating as unreachable: {e}")
            reachable = False

        try:
            info = await run.resolver.resolve(address, run.known_link_address.get(address))
        except Exception as e:  # pylint: disable=broad-except
            logger.debug(f"Could not resolve device info for {address}: {e}")
            info = DeviceInfo()

        if run.finished or run is not self._run:
            return
        self._on_probe_result(run, Device(
            address=address,
            link_address=run.known_link_address.get(address),
            hostname=info.hostname,
            reachable=bool(reachable),
            vendor=info.vendor,
        ))

    def _on_probe_result(self, run: _ScanRun, device: Device) -> None:
        run.in_flight.discard(device.address)
        run.completed[device.address] = device
        self._log(run, f"{device.address} {'reachable' if device.reachable else 'unreachable'}"
                       f" ({device.hostname or 'no hostname'})")
        if run.discovery_returned:
            self._publish_result(device)
        else:
            run.held.append(device)
        self.dispatch()
        self._check_completion(run)

    def _publish_result(self, device: Device) -> None:
        self.events.emit(ScanEvent.DEVICE_RESOLVED, device)
        if device.reachable:
            self.events.emit(ScanEvent.PROBE_REACHABLE, device.address)

    def _check_completion(self, run: _ScanRun) -> None:
        if run.discovery_done and run.discovery_returned and not run.in_flight and not run.pending:
            self._finalize(run)

    def _finalize(self, run: _ScanRun) -> None:
        if run.finished:
            return
        run.finished = True
        run.release()

        inventory = sorted(run.completed.values(), key=lambda d: ip_sort_key(d.address))
        report = ScanReport.for_target_list(
            attempted=[d.address for d in inventory],
            found=[d.address for d in inventory if d.reachable],
            elapsed_ms=run.elapsed_ms(),
        )
        logger.info(f"Scan complete: {len(report.targets)}/{report.count} devices reachable "
                    f"in {report.elapsed_ms}ms")
        self.events.emit(ScanEvent.SCAN_COMPLETE, report)
        self.events.emit(ScanEvent.INVENTORY, inventory)
        if not run.done.done():
            run.done.set_result(inventory)

    def _abort(self, run: _ScanRun) -> None:
        """Stops whatever is left of a run; after finalization this only tidies up."""
        if not run.finished:
            logger.debug(f"Aborting scan with {len(run.in_flight)} probes in flight "
                         f"and {len(run.pending)} queued")
        run.finished = True
        for task in list(run.tasks):
            task.cancel()
        run.release()

    def _active_run(self) -> _ScanRun:
        if self._run is None:
            raise RuntimeError("No scan is running")
        return self._run

    @staticmethod
    def _log(run: _ScanRun, message: str) -> None:
        if run.config.verbose:
            logger.info(message)
        else:
            logger.debug(message)


async def start_hybrid_scan(config: Union[ScanConfig, Mapping[str, Any]],
                            discovery_probe: Optional[AddressDiscoveryProbe] = None,
                            session_factory: Callable[[], LivenessSession] = PingSession,
                            resolver: Optional[DeviceInfoResolver] = None,
                            handlers: Optional[Mapping[ScanEvent, Callable[[Any], None]]] = None
                            ) -> List[Device]:
    """Runs a hybrid scan with a fresh orchestrator and returns the inventory.

    ``handlers`` maps event kinds to callbacks subscribed for the duration of the run.
    Privileges must be checked by the caller (see ``utils.check_privileges``).
    """
    if discovery_probe is None:
        discovery_probe = ArpScanProbe()
    orchestrator = HybridScanOrchestrator(discovery_probe, session_factory=session_factory, resolver=resolver)
    with orchestrator.events.scope() as scope:
        for kind, handler in (handlers or {}).items():
            scope.subscribe(kind, handler)
        return await orchestrator.start(config)
