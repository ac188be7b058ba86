"""
Readiness evaluation.

Every wait is bounded by a shared ``Deadline``; blocking reads (log streams)
run on worker threads so an expired deadline always surfaces as
``ReadinessTimeout`` instead of a hang.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeout

import requests

from .errors import ContainerError, ReadinessTimeout
from .logstream import LogScanner
from .models import All, ContainerState, Duration, Healthcheck, Http, LogMessage, WaitCondition
from .ports import resolve
from .settings import AppSettings, get_settings

logger = logging.getLogger(__name__)


# how often a blocked log wait looks for cancellation
CANCEL_CHECK_INTERVAL = 0.1


class Deadline:
    """
    Monotonic deadline shared by the waits of one lifecycle.

    ``cancel()`` expires it early; children created with ``child()`` expire
    with their parent but can be cancelled on their own.
    """

    def __init__(self, seconds: float, parent: "Deadline | None" = None):
        self.total = parent.total if parent else seconds
        self._end = time.monotonic() + seconds
        self._parent = parent
        self._cancelled = threading.Event()

    def child(self) -> "Deadline":
        return Deadline(self.remaining(), parent=self)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set() or (self._parent is not None and self._parent.cancelled)

    def remaining(self) -> float:
        if self.cancelled:
            return 0.0
        return max(0.0, self._end - time.monotonic())

    def sleep(self, seconds: float) -> None:
        """Sleeps at most ``seconds``, never past the deadline; wakes early on cancel."""
        end = time.monotonic() + min(seconds, self.remaining())
        while not self.cancelled:
            left = end - time.monotonic()
            if left <= 0:
                return
            self._cancelled.wait(min(left, CANCEL_CHECK_INTERVAL))

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


class ConditionEvaluator:
    def __init__(
        self,
        runtime,
        settings: AppSettings | None = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.runtime = runtime
        self.settings = settings or get_settings()
        self.session_factory = session_factory

    def wait(self, condition: WaitCondition, state: ContainerState, deadline: Deadline) -> None:
        """Returns once ``condition`` holds; raises ReadinessTimeout otherwise."""
        logger.debug(f"Waiting for {condition.describe()} on {state.id[:12]}")

        if isinstance(condition, LogMessage):
            self._wait_log(condition, state, deadline)
        elif isinstance(condition, Http):
            self._wait_http(condition, state, deadline)
        elif isinstance(condition, Duration):
            self._wait_duration(condition, deadline)
        elif isinstance(condition, Healthcheck):
            self._wait_healthy(condition, state, deadline)
        elif isinstance(condition, All):
            self.wait_all(condition.conditions, state, deadline)
        else:
            raise TypeError(f"Unsupported wait condition: {condition!r}")

        logger.debug(f"Satisfied {condition.describe()} on {state.id[:12]}")

    def wait_all(self, conditions: Iterable[WaitCondition], state: ContainerState, deadline: Deadline) -> None:
        """Every condition must hold. Children run concurrently against the same deadline."""
        conditions = list(conditions)
        if not conditions:
            return
        if len(conditions) == 1:
            self.wait(conditions[0], state, deadline)
            return

        group = deadline.child()
        unmet: list[str] = []
        reasons: list[str] = []
        failure: ContainerError | None = None
        with ThreadPoolExecutor(max_workers=len(conditions), thread_name_prefix="wait") as pool:
            futures = [pool.submit(self.wait, c, state, group) for c in conditions]
            for future in as_completed(futures):
                try:
                    future.result()
                except ReadinessTimeout as e:
                    unmet.extend(e.unmet_conditions)
                    if e.reason:
                        reasons.append(e.reason)
                except ContainerError as e:
                    # siblings cannot succeed the group any more
                    failure = failure or e
                    group.cancel()
                except Exception:
                    group.cancel()
                    raise

        if failure is not None:
            raise failure
        if unmet:
            raise ReadinessTimeout(unmet, deadline.total, reason="; ".join(reasons) or None)

    def _wait_log(self, condition: LogMessage, state: ContainerState, deadline: Deadline) -> None:
        stream = self.runtime.logs(state.id, condition.stream, since=state.started_at)
        scanner = LogScanner(condition.text)

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="log-scan") as pool:
            future = pool.submit(scanner.scan, stream)
            try:
                while True:
                    try:
                        matched = future.result(timeout=min(deadline.remaining(), CANCEL_CHECK_INTERVAL))
                        break
                    except FutureTimeout:
                        if deadline.expired:
                            raise ReadinessTimeout([condition.describe()], deadline.total) from None
            finally:
                # unblocks the scanning thread when the deadline won
                stream.close()

        if not matched:
            raise ReadinessTimeout(
                [condition.describe()], deadline.total, reason=f"{condition.stream} closed before match"
            )

    def _wait_http(self, condition: Http, state: ContainerState, deadline: Deadline) -> None:
        url = f"{condition.scheme}://{state.host}:{resolve(state, condition.port)}{condition.path}"
        interval = condition.poll_interval or self.settings.HTTP_POLL_INTERVAL

        with self.session_factory() as session:
            while not deadline.expired:
                if self._probe(session, condition, url, deadline):
                    return
                deadline.sleep(interval)

        raise ReadinessTimeout([condition.describe()], deadline.total)

    def _probe(self, session: requests.Session, condition: Http, url: str, deadline: Deadline) -> bool:
        timeout = max(0.01, min(self.settings.HTTP_REQUEST_TIMEOUT, deadline.remaining()))
        try:
            response = session.request(
                condition.method,
                url,
                headers=condition.headers,
                timeout=timeout,
                verify=condition.verify_tls,
            )
        except requests.RequestException as e:
            # refused, reset or truncated while the service boots
            logger.debug(f"{url} not reachable yet: {e}")
            return False

        if response.status_code != condition.expected_status:
            logger.debug(f"{url} answered {response.status_code}, want {condition.expected_status}")
            return False
        if condition.expected_body is not None and condition.expected_body not in response.text:
            logger.debug(f"{url} body does not contain {condition.expected_body!r}")
            return False
        return True

    def _wait_duration(self, condition: Duration, deadline: Deadline) -> None:
        logger.warning(f"Using {condition.describe()} as readiness signal; this is unreliable under load")
        delay = condition.millis / 1000
        if delay > deadline.remaining():
            deadline.sleep(delay)
            raise ReadinessTimeout([condition.describe()], deadline.total, reason="delay exceeds startup timeout")
        deadline.sleep(delay)
        if deadline.cancelled:
            raise ReadinessTimeout([condition.describe()], deadline.total, reason="cancelled")

    def _wait_healthy(self, condition: Healthcheck, state: ContainerState, deadline: Deadline) -> None:
        while True:
            status = self.runtime.health(state.id)
            if status is None:
                raise ReadinessTimeout([condition.describe()], deadline.total, reason="no healthcheck configured")
            if status == "healthy":
                return
            if deadline.expired:
                raise ReadinessTimeout([condition.describe()], deadline.total, reason=f"last status {status}")
            deadline.sleep(self.settings.HEALTH_POLL_INTERVAL)
