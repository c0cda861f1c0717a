"""Worker pool, watchers and resync timer around the dashboard controller."""

from __future__ import annotations

import logging
import threading

from homer_operator.config.settings import settings
from homer_operator.core.controller import DashboardController
from homer_operator.core.errors import HomerOperatorError, ReconcileCancelled
from homer_operator.core.k8s_client import K8sClient
from homer_operator.core.watchers import WATCHED_KINDS, EventMapper, ResourceWatcher
from homer_operator.core.workqueue import WorkQueue
from homer_operator.models.dashboard import Dashboard

logger = logging.getLogger(__name__)


class ControllerRunner:
    """Feeds dashboard keys from watches and the resync timer to worker threads."""

    def __init__(
        self,
        controller: DashboardController,
        k8s: K8sClient,
        workers: int | None = None,
        resync_seconds: float | None = None,
        queue: WorkQueue | None = None,
        watch_kinds: tuple[str, ...] = WATCHED_KINDS,
    ):
        self.controller = controller
        self._k8s = k8s
        self._workers = workers or settings.workers
        self._resync = resync_seconds or settings.resync_seconds
        if queue is None:
            queue = WorkQueue(settings.failure_base_delay, settings.failure_max_delay)
        self.queue = queue
        self._watch_kinds = tuple(
            k for k in watch_kinds
            if settings.enable_gateway_api or k not in ("HTTPRoute", "Gateway")
        )
        self.mapper = EventMapper(controller.known_dashboards)
        self.stopping = threading.Event()
        self._threads: list[threading.Thread] = []

    def handle_event(self, kind: str, event_type: str, obj: dict) -> None:
        keys = self.mapper.keys_for(kind, obj)
        if keys:
            logger.debug("%s %s event queues %s", kind, event_type, keys)
        for key in keys:
            self.queue.add(key)

    def seed(self) -> None:
        """Queue every existing dashboard."""
        for raw in self._k8s.list_dashboards(settings.watch_namespace or None):
            dashboard = Dashboard.from_dict(raw)
            self.controller.remember(dashboard)
            self.queue.add(dashboard.key)

    def resync_once(self) -> None:
        for key in self.controller.known_keys():
            self.queue.add(key)

    def _resync_loop(self) -> None:
        while not self.stopping.wait(self._resync):
            logger.debug("Periodic resync")
            self.resync_once()

    def process_next(self, timeout: float | None = 1.0) -> bool:
        """Reconcile one key. Returns False once the queue has shut down."""
        key = self.queue.get(timeout=timeout)
        if key is None:
            return not self.queue.shutting_down
        try:
            result = self.controller.reconcile(key, cancel=self.stopping)
        except ReconcileCancelled:
            logger.debug("Reconcile of %s cancelled", key)
        except HomerOperatorError as e:
            if e.retryable:
                delay = self.queue.add_rate_limited(key)
                logger.warning("Reconcile of %s failed, retrying in %.1fs: %s", key, delay, e)
            else:
                # a config change or the next resync is what fixes these
                logger.error("Reconcile of %s failed: %s", key, e)
                self.queue.add_after(key, self._resync)
        except Exception:
            delay = self.queue.add_rate_limited(key)
            logger.exception("Unexpected error reconciling %s, retrying in %.1fs", key, delay)
        else:
            self.queue.forget(key)
            if result.requeue:
                self.queue.add(key)
            elif result.requeue_after:
                self.queue.add_after(key, result.requeue_after)
        finally:
            self.queue.done(key)
        return True

    def _worker(self) -> None:
        while self.process_next():
            pass

    def start(self) -> None:
        self.seed()
        for kind in self._watch_kinds:
            t = ResourceWatcher(self._k8s, kind, self.handle_event, self.stopping)
            t.start()
            self._threads.append(t)
        for i in range(self._workers):
            t = threading.Thread(target=self._worker, name=f"worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        t = threading.Thread(target=self._resync_loop, name="resync", daemon=True)
        t.start()
        self._threads.append(t)
        logger.info(
            "Controller started with %d workers, resync every %.0fs", self._workers, self._resync,
        )

    def stop(self, timeout: float = 10.0) -> None:
        self.stopping.set()
        self.queue.shut_down()
        for t in self._threads:
            t.join(timeout=timeout)
        logger.info("Controller stopped")

    def run_forever(self) -> None:
        self.start()
        try:
            while not self.stopping.wait(1.0):
                pass
        finally:
            self.stop()
