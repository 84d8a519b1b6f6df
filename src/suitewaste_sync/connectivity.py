"""Connectivity monitor and network reachability poller.

The monitor is a pure signal source: the host application (or the poller)
reports online/offline transitions and foreground regain, and the monitor
fires the sync trigger when a pass is worth attempting.
"""

import logging
import socket
import threading
from typing import Callable, Optional

from .config import DEFAULT_POLL_INTERVAL, DEFAULT_PROBE_HOST, DEFAULT_PROBE_PORT

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Tracks the online/offline signal and fires sync triggers.

    - OFFLINE -> ONLINE fires the trigger
    - ONLINE -> OFFLINE fires nothing; in-flight passes fail on their own
    - foreground regain fires the trigger when online with records pending
    """

    def __init__(
        self,
        initial_online: bool = True,
        pending_count: Optional[Callable[[], int]] = None,
    ):
        self._online = initial_online
        self._pending_count = pending_count
        self._trigger: Optional[Callable[[str], object]] = None
        self._listeners: list[Callable[[bool], None]] = []
        self._lock = threading.Lock()

    @property
    def is_online(self) -> bool:
        return self._online

    def set_trigger(self, trigger: Callable[[str], object]) -> None:
        """Register the sync trigger; it receives a reason string."""
        self._trigger = trigger

    def set_pending_count(self, pending_count: Callable[[], int]) -> None:
        self._pending_count = pending_count

    def add_listener(self, listener: Callable[[bool], None]) -> None:
        """Observe every state transition (fn(is_online: bool))."""
        self._listeners.append(listener)

    def on_connectivity_change(self, is_online: bool) -> None:
        """Report the platform's current network state."""
        with self._lock:
            was_online = self._online
            self._online = is_online

        if was_online == is_online:
            return

        logger.info(f"Network change detected: {'online' if is_online else 'offline'}")
        for listener in list(self._listeners):
            _safe_call(listener, is_online)

        if is_online:
            self._fire("connectivity")

    def on_foreground(self) -> None:
        """Report that the application regained the foreground."""
        if not self._online:
            return
        if self._pending_count is not None and self._pending_count() <= 0:
            return
        self._fire("foreground")

    def _fire(self, reason: str) -> None:
        if self._trigger is None:
            logger.debug(f"No sync trigger registered, ignoring {reason} signal")
            return
        _safe_call(self._trigger, reason)


class NetworkPoller:
    """Poll network connectivity and feed transitions into a monitor."""

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        host: str = DEFAULT_PROBE_HOST,
        port: int = DEFAULT_PROBE_PORT,
        interval: int = DEFAULT_POLL_INTERVAL,
        timeout: float = 5.0,
    ):
        self.monitor = monitor
        self.host = host
        self.port = port
        self.interval = interval
        self.timeout = timeout
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def probe(self) -> bool:
        """Return True if a TCP connection to the probe host succeeds."""
        try:
            socket.create_connection((self.host, self.port), timeout=self.timeout).close()
            return True
        except OSError:
            return False

    def check_once(self) -> bool:
        """Probe once and report the result to the monitor."""
        online = self.probe()
        self.monitor.on_connectivity_change(online)
        return online

    def start(self) -> None:
        """Start polling on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()

        def poll():
            while not self._stop.is_set():
                self.check_once()
                self._stop.wait(self.interval)

        self._thread = threading.Thread(target=poll, name="network-poller", daemon=True)
        self._thread.start()
        logger.debug(f"Network poller started (interval: {self.interval}s)")

    def stop(self) -> None:
        """Stop polling."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.timeout + 1)
            self._thread = None


def _safe_call(fn: Callable, *args) -> None:
    """Call a function, catching and logging any exceptions."""
    try:
        fn(*args)
    except Exception:
        logger.exception(f"Error in connectivity callback {getattr(fn, '__name__', fn)}")
