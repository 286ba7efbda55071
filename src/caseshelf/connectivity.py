"""
Connectivity tracking.

ConnectivityObserver holds the current online/offline state and delivers each
transition, in order, to every registered listener. Raw events come from a
PlatformConnectivitySignal; without one the observer assumes online.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Protocol, runtime_checkable

import httpx

from caseshelf.logging import get_logger
from caseshelf.types import ConnectivityState

logger = get_logger(__name__)

Listener = Callable[[ConnectivityState], None]


@runtime_checkable
class PlatformConnectivitySignal(Protocol):
    """Host-provided source of raw online/offline events."""

    def initial_state(self) -> ConnectivityState | None:
        """State at subscription time, None if the host cannot tell."""
        ...

    def subscribe(self, callback: Listener) -> None:
        """Register the callback that receives raw state events."""
        ...


class ConnectivityObserver:
    """Tracks connectivity and fans transitions out to listeners.

    Delivery is synchronous on the loop or thread that calls ``notify``.
    Listeners must return quickly and defer long work.
    """

    def __init__(self, signal: PlatformConnectivitySignal | None = None) -> None:
        self._listeners: list[Listener] = []
        self._state = ConnectivityState.ONLINE
        self._confident = False
        self._pending: deque[ConnectivityState] = deque()
        self._delivering = False

        if signal is not None:
            initial = signal.initial_state()
            if initial is not None:
                self._state = initial
                self._confident = True
            signal.subscribe(self.notify)
        else:
            logger.info("No connectivity signal, assuming online")

    @property
    def confident(self) -> bool:
        """False while the state is the assumed default rather than observed."""
        return self._confident

    @property
    def is_online(self) -> bool:
        return self._state == ConnectivityState.ONLINE

    def current_state(self) -> ConnectivityState:
        """Get the last known connectivity state."""
        return self._state

    def on_change(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for state transitions.

        Returns:
            A callable that unregisters the listener.
        """
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: Listener) -> None:
        """Unregister a listener. Unknown listeners are ignored."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self, state: ConnectivityState) -> None:
        """Record a raw platform event and deliver it if it is a transition.

        Events raised by a listener during delivery are queued and delivered
        after the current transition has reached every listener.
        """
        self._confident = True
        self._pending.append(state)
        if self._delivering:
            return

        self._delivering = True
        try:
            while self._pending:
                self._deliver(self._pending.popleft())
        finally:
            self._delivering = False

    def _deliver(self, state: ConnectivityState) -> None:
        if state == self._state:
            return

        previous = self._state
        self._state = state
        logger.info("Connectivity changed", previous=previous.value, state=state.value)

        # Snapshot so listeners may unsubscribe during delivery.
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connectivity listener failed", state=state.value)


class ManualSignal:
    """Connectivity signal driven explicitly by the embedding host."""

    def __init__(self, initial: ConnectivityState | None = ConnectivityState.ONLINE) -> None:
        self._initial = initial
        self._callbacks: list[Listener] = []

    def initial_state(self) -> ConnectivityState | None:
        return self._initial

    def subscribe(self, callback: Listener) -> None:
        self._callbacks.append(callback)

    def set_online(self) -> None:
        self.emit(ConnectivityState.ONLINE)

    def set_offline(self) -> None:
        self.emit(ConnectivityState.OFFLINE)

    def emit(self, state: ConnectivityState) -> None:
        for callback in list(self._callbacks):
            callback(state)


class HttpProbeSignal:
    """Connectivity signal that polls a URL with httpx.

    Any HTTP response counts as online; request errors count as offline.
    """

    def __init__(
        self,
        url: str,
        interval: float = 15.0,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            url: URL to probe with HEAD requests.
            interval: Seconds between probes.
            timeout: Per-probe timeout in seconds.
            client: Optional preconfigured client (owned by the caller).
        """
        self.url = url
        self.interval = interval
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._callbacks: list[Listener] = []
        self._task: asyncio.Task[None] | None = None

    def initial_state(self) -> ConnectivityState | None:
        # Unknown until the first probe completes.
        return None

    def subscribe(self, callback: Listener) -> None:
        self._callbacks.append(callback)

    async def probe(self) -> ConnectivityState:
        """Run one probe and emit its result."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        try:
            await self._client.head(self.url)
            state = ConnectivityState.ONLINE
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Connectivity probe failed", url=self.url, error=str(e))
            state = ConnectivityState.OFFLINE

        for callback in list(self._callbacks):
            callback(state)
        return state

    async def _run(self) -> None:
        while True:
            try:
                await self.probe()
            except Exception:
                logger.exception("Connectivity probe crashed", url=self.url)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start polling on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop polling and release the HTTP client."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
