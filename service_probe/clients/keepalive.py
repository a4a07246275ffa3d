from __future__ import annotations

import logging
import threading
import time
from typing import Callable

import requests
from requests.adapters import HTTPAdapter

from service_probe.models import AgentConfig

logger = logging.getLogger(__name__)


class KeepAliveAdapter(HTTPAdapter):
    """HTTPAdapter that drops its idle sockets after ``free_socket_timeout_ms``.

    urllib3 keeps returned connections forever; an upstream load balancer will
    usually close them first and the next request then fails on a dead socket.
    """

    def __init__(
        self,
        agent: AgentConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.agent = agent
        self.free_socket_timeout_s = agent.free_socket_timeout_ms / 1000
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight = 0
        self._idle_since: float | None = None
        super().__init__(
            pool_connections=1,
            pool_maxsize=agent.max_free_sockets,
            max_retries=0,
            pool_block=False,
        )

    def _expire_idle_sockets(self) -> None:
        now = self._clock()
        if (
            self._in_flight == 0
            and self._idle_since is not None
            and now - self._idle_since > self.free_socket_timeout_s
        ):
            logger.debug(
                "Closing keep-alive sockets idle for %.1fs", now - self._idle_since
            )
            self.poolmanager.clear()
        self._idle_since = None

    def send(self, request, **kwargs):
        with self._lock:
            self._expire_idle_sockets()
            self._in_flight += 1
        try:
            return super().send(request, **kwargs)
        finally:
            with self._lock:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._idle_since = self._clock()


def transport_prefix(url: str) -> str:
    return "https://" if url.startswith("https") else "http://"


def build_keepalive_session(url: str, agent: AgentConfig) -> requests.Session:
    """Session whose only pool serves the scheme of ``url``."""
    session = requests.Session()
    session.adapters.clear()
    session.mount(transport_prefix(url), KeepAliveAdapter(agent))
    return session
