"""Watch-backed cache of SparkApplication objects for one cluster.

A single background thread lists the SparkApplications (optionally
filtered by label selector), replaces the cache, then watches from the
list's resourceVersion. The watch is bounded by the resync period, so the
cache is re-listed at least that often. Any failure is logged and retried
with capped exponential backoff.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from spark_gateway.models import SPARK_GROUP, SPARK_PLURAL, SPARK_VERSION

logger = logging.getLogger(__name__)

Key = tuple[str, str]


def _key(obj: dict[str, Any]) -> Key:
    meta = obj.get("metadata") or {}
    return meta.get("namespace", ""), meta.get("name", "")


class SparkApplicationCache:
    """In-memory index of SparkApplication dicts keyed by (namespace, name).

    Written only by the controller thread. Readers get deep copies, so a
    snapshot never changes under them.
    """

    def __init__(self) -> None:
        self._items: dict[Key, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def replace(self, items: Iterable[dict[str, Any]]) -> None:
        fresh = {_key(obj): obj for obj in items}
        with self._lock:
            self._items = fresh

    def apply(self, event_type: str, obj: dict[str, Any]) -> None:
        key = _key(obj)
        with self._lock:
            if event_type in ("ADDED", "MODIFIED"):
                self._items[key] = obj
            elif event_type == "DELETED":
                self._items.pop(key, None)
            else:
                logger.debug("Ignoring watch event type %s for %s/%s", event_type, *key)

    def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        with self._lock:
            obj = self._items.get((namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def list(self, namespace: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            items = [
                obj for (ns, _), obj in sorted(self._items.items())
                if namespace is None or ns == namespace
            ]
        return copy.deepcopy(items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class WatchExpired(Exception):
    """The watch stream reported an ERROR event (typically 410 Gone)."""


class SparkApplicationController:
    """Keeps a ``SparkApplicationCache`` in sync with the cluster."""

    def __init__(
        self,
        api: Any,
        cache: SparkApplicationCache | None = None,
        *,
        label_selector: str | None = None,
        resync_period: float = 30.0,
        stall_threshold: float = 300.0,
        request_timeout: float = 30.0,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
        watch_factory: Callable[[], Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api = api
        self.cache = cache if cache is not None else SparkApplicationCache()
        self.label_selector = label_selector
        self.resync_period = resync_period
        self.stall_threshold = stall_threshold
        self.request_timeout = request_timeout
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._watch_factory = watch_factory or _default_watch
        self._clock = clock

        self._stop = threading.Event()
        self._synced = threading.Event()
        self._thread: threading.Thread | None = None
        self._current_watch: Any = None
        self._last_sync: float | None = None

    # --- Lifecycle ---

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name="sparkapplication-controller", daemon=True
        )
        self._thread.start()

    def wait_for_sync(self, timeout: float) -> bool:
        """Block until the first successful list, or *timeout* seconds pass."""
        return self._synced.wait(timeout)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        watch = self._current_watch
        if watch is not None:
            watch.stop()
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def last_sync(self) -> float | None:
        return self._last_sync

    def is_healthy(self) -> bool:
        if self._stop.is_set() or self._last_sync is None:
            return False
        return self._clock() - self._last_sync <= self.stall_threshold

    # --- Loop ---

    def _mark_synced(self) -> None:
        self._last_sync = self._clock()
        self._synced.set()

    def _selector_kwargs(self) -> dict[str, Any]:
        return {"label_selector": self.label_selector} if self.label_selector else {}

    def _run(self) -> None:
        backoff = self.initial_backoff
        while not self._stop.is_set():
            try:
                resource_version = self.relist()
                backoff = self.initial_backoff
                self.watch(resource_version)
            except WatchExpired as e:
                logger.info("Watch expired (%s); relisting", e)
                continue
            except Exception:
                logger.exception(
                    "SparkApplication list/watch failed; retrying in %.1fs", backoff
                )
                if self._stop.wait(backoff):
                    break
                backoff = min(backoff * 2, self.max_backoff)
        logger.info("SparkApplication controller stopped")

    def relist(self) -> str:
        """List everything, replace the cache, and return the resourceVersion."""
        resp = self.api.list_cluster_custom_object(
            SPARK_GROUP,
            SPARK_VERSION,
            SPARK_PLURAL,
            _request_timeout=self.request_timeout,
            **self._selector_kwargs(),
        )
        items = resp.get("items") or []
        self.cache.replace(items)
        self._mark_synced()
        resource_version = (resp.get("metadata") or {}).get("resourceVersion", "")
        logger.debug(
            "Listed %d SparkApplications at resourceVersion %s", len(items), resource_version
        )
        return resource_version

    def watch(self, resource_version: str) -> None:
        """Apply watch events until the stream ends or the controller stops."""
        w = self._watch_factory()
        self._current_watch = w
        try:
            stream = w.stream(
                self.api.list_cluster_custom_object,
                SPARK_GROUP,
                SPARK_VERSION,
                SPARK_PLURAL,
                resource_version=resource_version,
                timeout_seconds=max(1, int(self.resync_period)),
                _request_timeout=self.resync_period + self.request_timeout,
                **self._selector_kwargs(),
            )
            for event in stream:
                if self._stop.is_set():
                    break
                event_type = event.get("type", "")
                obj = event.get("object")
                if event_type == "ERROR":
                    code = obj.get("code") if isinstance(obj, dict) else None
                    raise WatchExpired(f"watch error event (code {code})")
                if not isinstance(obj, dict):
                    continue
                self.cache.apply(event_type, obj)
                self._mark_synced()
        finally:
            self._current_watch = None
            w.stop()


def _default_watch() -> Any:
    from kubernetes import watch

    return watch.Watch()
