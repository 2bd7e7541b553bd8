"""
Connectivity monitor for the offline sync engine.

Tracks online/offline/connecting state and a coarse connection quality from
path updates delivered by a connectivity source, and fires edge-triggered
callbacks when the connection is restored or lost.

Features:
- Quality grading from interface type and metered/constrained flags
- ``should_defer_sync`` hint for postponing non-critical syncs
- Listener list for every state or quality change
- Offline duration tracking
- HTTP reachability probe (httpx) as the connectivity source
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Callable, Optional

import httpx

from .models import utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# Enums and Events
# =============================================================================

class ConnectionState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    CONNECTING = "connecting"


class ConnectionQuality(IntEnum):
    """Coarse quality grade. Ordered, so grades compare with ``<``."""
    UNKNOWN = 0
    POOR = 1
    MODERATE = 2
    GOOD = 3
    EXCELLENT = 4

    @property
    def label(self) -> str:
        return self.name.lower()


class InterfaceType(str, Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    WIRED = "wired"
    OTHER = "other"


class PathStatus(str, Enum):
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    REQUIRES_CONNECTION = "requires_connection"


@dataclass(frozen=True)
class PathUpdate:
    """A network path change reported by the connectivity source."""
    status: PathStatus
    interface: InterfaceType = InterfaceType.OTHER
    is_expensive: bool = False
    is_constrained: bool = False

    @classmethod
    def online(cls, interface: InterfaceType = InterfaceType.WIFI, **flags) -> "PathUpdate":
        return cls(PathStatus.SATISFIED, interface, **flags)

    @classmethod
    def offline(cls) -> "PathUpdate":
        return cls(PathStatus.UNSATISFIED)

    @classmethod
    def connecting(cls) -> "PathUpdate":
        return cls(PathStatus.REQUIRES_CONNECTION)


@dataclass(frozen=True)
class ConnectionSnapshot:
    """What listeners receive on every change."""
    state: ConnectionState
    quality: ConnectionQuality
    interface: Optional[InterfaceType]
    is_expensive: bool
    is_constrained: bool
    should_defer_sync: bool

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "quality": self.quality.label,
            "interface": self.interface.value if self.interface else None,
            "is_expensive": self.is_expensive,
            "is_constrained": self.is_constrained,
            "should_defer_sync": self.should_defer_sync,
        }


_STATE_FOR_STATUS = {
    PathStatus.SATISFIED: ConnectionState.ONLINE,
    PathStatus.UNSATISFIED: ConnectionState.OFFLINE,
    PathStatus.REQUIRES_CONNECTION: ConnectionState.CONNECTING,
}

_BASE_QUALITY = {
    InterfaceType.WIRED: ConnectionQuality.EXCELLENT,
    InterfaceType.WIFI: ConnectionQuality.GOOD,
    InterfaceType.CELLULAR: ConnectionQuality.MODERATE,
    InterfaceType.OTHER: ConnectionQuality.POOR,
}


def grade_quality(update: PathUpdate) -> ConnectionQuality:
    """Derive a quality grade from a path update."""
    if update.status != PathStatus.SATISFIED:
        return ConnectionQuality.UNKNOWN

    quality = _BASE_QUALITY[update.interface]
    if update.is_constrained:
        quality = ConnectionQuality(max(quality - 1, ConnectionQuality.POOR))
    return quality


# =============================================================================
# Connectivity Monitor
# =============================================================================

class ConnectivityMonitor:
    """
    Observes network reachability and quality.

    ``on_restored`` fires on each transition into ONLINE and ``on_lost`` on
    each transition out of it. Updates must be applied from the event loop
    the rest of the sync core runs on.
    """

    def __init__(self, state: ConnectionState = ConnectionState.CONNECTING):
        self._state = ConnectionState(state)
        self._quality = ConnectionQuality.UNKNOWN
        self._interface: Optional[InterfaceType] = None
        self._is_expensive = False
        self._is_constrained = False
        self._offline_since: Optional[datetime] = (
            utcnow() if self._state == ConnectionState.OFFLINE else None
        )

        self.on_restored: Optional[Callable[[], None]] = None
        self.on_lost: Optional[Callable[[], None]] = None
        self._listeners: list[Callable[[ConnectionSnapshot], None]] = []

    # === State ===

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def quality(self) -> ConnectionQuality:
        return self._quality

    @property
    def is_online(self) -> bool:
        return self._state == ConnectionState.ONLINE

    @property
    def is_offline(self) -> bool:
        return not self.is_online

    @property
    def should_defer_sync(self) -> bool:
        """Postpone non-critical syncs on poor, metered, or constrained paths."""
        return (
            self._quality < ConnectionQuality.MODERATE
            or self._is_expensive
            or self._is_constrained
        )

    @property
    def offline_since(self) -> Optional[datetime]:
        return self._offline_since

    def offline_duration(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        """How long the device has been offline, or None while online."""
        if self._offline_since is None:
            return None
        return (now or utcnow()) - self._offline_since

    def describe_offline_duration(self, now: Optional[datetime] = None) -> str:
        duration = self.offline_duration(now)
        if duration is None:
            return ""
        seconds = int(duration.total_seconds())
        if seconds < 60:
            return "Offline for less than a minute"
        if seconds < 3600:
            return f"Offline for {seconds // 60}m"
        return f"Offline for {seconds // 3600}h {(seconds % 3600) // 60}m"

    def snapshot(self) -> ConnectionSnapshot:
        return ConnectionSnapshot(
            state=self._state,
            quality=self._quality,
            interface=self._interface,
            is_expensive=self._is_expensive,
            is_constrained=self._is_constrained,
            should_defer_sync=self.should_defer_sync,
        )

    # === Listeners ===

    def add_listener(self, callback: Callable[[ConnectionSnapshot], None]) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[ConnectionSnapshot], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # === Updates ===

    def apply(self, update: PathUpdate) -> None:
        """Apply a path update from the connectivity source."""
        previous = self.snapshot()

        self._state = _STATE_FOR_STATUS[update.status]
        self._quality = grade_quality(update)
        if self._state == ConnectionState.ONLINE:
            self._interface = update.interface
            self._is_expensive = update.is_expensive
            self._is_constrained = update.is_constrained
        else:
            self._interface = None
            self._is_expensive = False
            self._is_constrained = False

        current = self.snapshot()
        if current == previous:
            return

        was_online = previous.state == ConnectionState.ONLINE
        if was_online and not self.is_online:
            self._offline_since = utcnow()
            logger.info(f"Connection lost ({self._state.value})")
        elif not was_online and self.is_online:
            self._offline_since = None
            logger.info(
                f"Connection restored via {self._interface.value} "
                f"(quality: {self._quality.label})"
            )
        elif self._state == ConnectionState.OFFLINE and self._offline_since is None:
            self._offline_since = utcnow()

        for listener in list(self._listeners):
            try:
                listener(current)
            except Exception:
                logger.exception("Connectivity listener failed")

        if was_online and not self.is_online and self.on_lost:
            self.on_lost()
        elif not was_online and self.is_online and self.on_restored:
            self.on_restored()

    def set_online(self, interface: InterfaceType = InterfaceType.WIFI) -> None:
        self.apply(PathUpdate.online(interface))

    def set_offline(self) -> None:
        self.apply(PathUpdate.offline())


# =============================================================================
# HTTP Reachability Probe
# =============================================================================

class HttpReachabilityProbe:
    """
    Connectivity source that polls a health URL over HTTP.

    Any response below 500 counts as reachable; transport errors, timeouts and
    5xx count as unreachable. The interface type and metered/constrained flags
    cannot be observed portably, so they come from configuration.
    """

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        url: str,
        interval: float = 15.0,
        timeout: float = 5.0,
        interface: InterfaceType = InterfaceType.WIFI,
        is_expensive: bool = False,
        is_constrained: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.monitor = monitor
        self.url = url
        self.interval = interval
        self.timeout = timeout
        self.interface = interface
        self.is_expensive = is_expensive
        self.is_constrained = is_constrained
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._task: Optional[asyncio.Task] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._http_client

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        """Probe the URL once and feed the result to the monitor."""
        client = await self._get_http_client()
        try:
            response = await client.get(self.url)
            reachable = response.status_code < 500
            if not reachable:
                logger.debug(f"Probe got {response.status_code} from {self.url}")
        except httpx.RequestError as e:
            logger.debug(f"Probe failed: {e}")
            reachable = False

        if reachable:
            self.monitor.apply(PathUpdate(
                PathStatus.SATISFIED,
                self.interface,
                is_expensive=self.is_expensive,
                is_constrained=self.is_constrained,
            ))
        else:
            self.monitor.apply(PathUpdate.offline())
        return reachable

    async def start(self) -> None:
        """Start polling in the background."""
        if self.is_running:
            logger.warning("Reachability probe already running")
            return
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Reachability probe started for {self.url}")

    async def stop(self) -> None:
        """Stop polling and close the HTTP client."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _poll_loop(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self.interval)
