from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Optional

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_any,
)
from urllib3.util import Timeout

from service_probe.checks.results import (
    OK,
    ProbeTimeout,
    TransportError,
    UnhealthyStatus,
)
from service_probe.clients.keepalive import build_keepalive_session
from service_probe.config import settings
from service_probe.models import AgentConfig

logger = logging.getLogger(__name__)

RESPONSE_TIMEOUT_S = 1.0
DEADLINE_S = 1.5
MAX_RETRIES = 2
BODY_CHUNK_BYTES = 1024

# Statuses worth another attempt; everything else (404 included) is final.
RETRY_STATUS_CODES = frozenset({408, 413, 429, 500, 502, 503, 504, 521, 522, 524})


def should_retry(
    error: Optional[TransportError], response: Optional[requests.Response]
) -> bool:
    if error is not None:
        return True
    return response is not None and response.status_code in RETRY_STATUS_CODES


def log_retry(
    error: Optional[TransportError], response: Optional[requests.Response]
) -> None:
    """Observer called before each retry. It must not change the decision."""
    if error is not None:
        code, message = error.code, error.message
    elif response is not None:
        code, message = response.status_code, response.reason
    else:
        return
    logger.info("Retry handler found API error with %s %s", code, message)


def _retryable_response(response: requests.Response) -> bool:
    return should_retry(None, response)


def _before_retry(state: RetryCallState) -> None:
    if state.outcome.failed:
        log_retry(state.outcome.exception(), None)
    else:
        log_retry(None, state.outcome.result())


def _last_outcome(state: RetryCallState):
    # Out of attempts or time: surface what the last attempt actually got.
    return state.outcome.result()


class ServiceCheck:
    """Health probe for one downstream dependency.

    Calling the instance starts a probe in the background and returns a
    ``Future`` that resolves to ``"OK"`` or raises ``UnhealthyStatus`` /
    ``TransportError``. asyncio callers can await it via ``asyncio.wrap_future``.

    The future is settled by whichever comes first: the attempts finishing or
    the deadline timer. A probe that loses to the timer keeps running in the
    background until its socket timeouts end it; its outcome is discarded.
    """

    def __init__(
        self,
        name: str,
        url: str,
        session: requests.Session,
        executor: Executor,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.url = url
        self._session = session
        self._executor = executor
        self._clock = clock
        self._lock = threading.Lock()

    def __call__(self) -> Future:
        future: Future = Future()
        future.set_running_or_notify_cancel()
        watchdog = threading.Timer(DEADLINE_S, self._expire, args=(future,))
        watchdog.daemon = True
        watchdog.start()
        self._executor.submit(self._run_attempts, future, watchdog)
        return future

    def __enter__(self) -> "ServiceCheck":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Wait for in-flight probes, then release the connection pool."""
        self._executor.shutdown(wait=True)
        self._session.close()

    def run(self) -> str:
        """Run one probe and block until it settles."""
        return self().result()

    def _settle(
        self,
        future: Future,
        result: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        with self._lock:
            if future.done():
                return
            if error is None:
                future.set_result(result)
                return
            if isinstance(error, TransportError):
                logger.error("Error calling %s", self.name, exc_info=error)
            future.set_exception(error)

    def _expire(self, future: Future) -> None:
        message = f"Deadline of {int(DEADLINE_S * 1000)}ms exceeded"
        raw = requests.Timeout(f"{message} calling {self.url}")
        self._settle(
            future, error=ProbeTimeout(self.name, raw, code="ETIME", message=message)
        )

    def _timed_out(self, raw: BaseException, deadline: float, clamped: bool) -> ProbeTimeout:
        if clamped or self._clock() >= deadline:
            return ProbeTimeout(
                self.name,
                raw,
                code="ETIME",
                message=f"Deadline of {int(DEADLINE_S * 1000)}ms exceeded",
            )
        return ProbeTimeout(
            self.name,
            raw,
            code="ETIMEDOUT",
            message=f"Timeout of {int(RESPONSE_TIMEOUT_S * 1000)}ms exceeded",
        )

    def _attempt(self, deadline: float) -> requests.Response:
        started = self._clock()
        budget = min(RESPONSE_TIMEOUT_S, deadline - started)
        clamped = budget < RESPONSE_TIMEOUT_S
        # Connect and first byte share one budget; urllib3 rejects zero.
        timeout = Timeout(total=max(budget, 0.001))
        try:
            response = self._session.get(self.url, timeout=timeout, stream=True)
        except requests.Timeout as exc:
            raise self._timed_out(exc, deadline, clamped) from exc
        except requests.RequestException as exc:
            raise TransportError(self.name, exc) from exc

        try:
            if self._clock() - started > RESPONSE_TIMEOUT_S:
                late = requests.ReadTimeout(f"headers from {self.url} arrived late")
                raise self._timed_out(late, deadline, clamped)
            for _ in response.iter_content(BODY_CHUNK_BYTES):
                if self._clock() >= deadline:
                    slow = requests.ReadTimeout(f"body from {self.url} still arriving")
                    raise self._timed_out(slow, deadline, clamped=True)
        except requests.RequestException as exc:
            raise TransportError(self.name, exc) from exc
        finally:
            response.close()
        return response

    def _run_attempts(self, future: Future, watchdog: threading.Timer) -> None:
        deadline = self._clock() + DEADLINE_S
        retrying = Retrying(
            stop=stop_any(
                stop_after_attempt(MAX_RETRIES + 1),
                lambda state: future.done() or self._clock() >= deadline,
            ),
            retry=retry_if_exception_type(TransportError)
            | retry_if_result(_retryable_response),
            before_sleep=_before_retry,
            retry_error_callback=_last_outcome,
        )
        try:
            response = retrying(self._attempt, deadline)
        except Exception as exc:
            self._settle(future, error=exc)
        else:
            if response.status_code == 200:
                self._settle(future, result=OK)
            else:
                self._settle(
                    future, error=UnhealthyStatus(self.name, response.status_code)
                )
        finally:
            watchdog.cancel()


def service_check_factory(
    name: str,
    url: str,
    agent: Optional[AgentConfig] = None,
    *,
    session: Optional[requests.Session] = None,
    executor: Optional[Executor] = None,
    clock: Callable[[], float] = time.monotonic,
) -> ServiceCheck:
    agent = agent or settings.agent_config()
    if session is None:
        session = build_keepalive_session(url, agent)
    if executor is None:
        # One worker holds at most one socket, so this caps open sockets.
        executor = ThreadPoolExecutor(
            max_workers=agent.max_sockets, thread_name_prefix=f"probe-{name}"
        )
    return ServiceCheck(name, url, session=session, executor=executor, clock=clock)
