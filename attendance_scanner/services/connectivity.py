import asyncio
import logging
from typing import Callable, List, Optional
from urllib.parse import urlparse

import requests
from nicegui import run

from attendance_scanner.core import config_manager

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """
    Process-wide online/offline flag. Going offline gates the scan loop at once;
    coming back online lets it capture again on its next tick.
    """

    def __init__(self, banner_timeout: float = 3.0, probe_url: Optional[str] = None):
        self.is_online = True
        self.banner_visible = False
        self.banner_timeout = banner_timeout
        self.probe_url = probe_url
        self._listeners: List[Callable[[bool], None]] = []
        self._banner_handle: Optional[asyncio.TimerHandle] = None

    def register_listener(self, callback: Callable[[bool], None]):
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unregister_listener(self, callback: Callable[[bool], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def set_online(self, online: bool):
        online = bool(online)
        if online == self.is_online:
            return

        self.is_online = online
        self.banner_visible = True
        self._cancel_banner_timer()
        if online:
            logger.info("Connectivity restored")
            self._schedule_banner_hide()
        else:
            logger.warning("Connectivity lost, scanning paused")

        for callback in list(self._listeners):
            try:
                callback(online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")

    def initialize(self, online: bool):
        """Sets the starting state (e.g. navigator.onLine) without a transition banner, except when offline."""
        self.is_online = bool(online)
        self.banner_visible = not self.is_online

    def hide_banner(self):
        self.banner_visible = False
        self._banner_handle = None
        for callback in list(self._listeners):
            try:
                callback(self.is_online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")

    def _schedule_banner_hide(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (plain sync caller): nothing to animate
            self.banner_visible = False
            return
        self._banner_handle = loop.call_later(self.banner_timeout, self.hide_banner)

    def _cancel_banner_timer(self):
        if self._banner_handle:
            self._banner_handle.cancel()
            self._banner_handle = None

    async def probe(self, timeout: float = 5.0) -> bool:
        """Checks that the recognition API host answers at all and updates the flag."""
        if not self.probe_url:
            return self.is_online
        try:
            try:
                await run.io_bound(requests.head, self.probe_url, timeout=timeout)
            except RuntimeError:
                await asyncio.to_thread(requests.head, self.probe_url, timeout=timeout)
            online = True
        except requests.RequestException as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False
        self.set_online(online)
        return online

    def teardown(self):
        self._cancel_banner_timer()
        self._listeners.clear()


def _probe_url(api_base: str) -> str:
    parsed = urlparse(api_base)
    return f"{parsed.scheme}://{parsed.netloc}"


_config = config_manager.load_config()
connectivity_monitor = ConnectivityMonitor(
    banner_timeout=float(_config["banner_timeout"]),
    probe_url=_probe_url(_config["api_base"]),
)
