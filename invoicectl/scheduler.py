import logging
import threading
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .db import connect_db, init_db
from .errors import SchedulerBusy
from .extraction import ExtractionClient, as_record, is_rate_limit
from .models import (
    Document, ItemStatus, QueueItem, Record,
    PENDING, PROCESSING, COMPLETED, FAILED, ITEM_STATES,
)
from .repository import get_config, config_number
from .retry import RetryPolicy
from .store import RecordStore

logger = logging.getLogger(__name__)


class BatchScheduler:
    """
    Sends queued documents to the extraction service one at a time.

    Items are dispatched in queue order with `inter_item_delay` seconds
    between them. A rate-limited item is retried in place on the
    RetryPolicy schedule and is fully resolved before the next one starts.
    Every other client failure fails the item straight away.

    `sleep` replaces the cancellable wait used at suspension points.
    """

    def __init__(self, client: ExtractionClient, store: RecordStore,
                 policy: Optional[RetryPolicy] = None,
                 inter_item_delay: float = 10.0,
                 extract_timeout: Optional[float] = None,
                 sleep: Optional[Callable[[float], None]] = None):
        self.client = client
        self.store = store
        self.policy = policy or RetryPolicy()
        self.inter_item_delay = inter_item_delay
        self.extract_timeout = extract_timeout
        self._sleep = sleep
        self._items: List[QueueItem] = []
        self._lock = threading.Lock()
        self._running = threading.Lock()
        self._cancel = threading.Event()
        self._listeners: List[Callable[[Tuple[ItemStatus, ...]], None]] = []

    @classmethod
    def from_config(cls, client: ExtractionClient, store: RecordStore, path=None, **kwargs):
        init_db(path)
        conn = connect_db(path)
        try:
            cfg = get_config(conn)
        finally:
            conn.close()
        kwargs.setdefault("policy", RetryPolicy(
            max_retries=config_number(cfg, "max_retries", int),
            base=config_number(cfg, "backoff_base"),
        ))
        kwargs.setdefault("inter_item_delay", config_number(cfg, "inter_item_delay"))
        kwargs.setdefault("extract_timeout", config_number(cfg, "extract_timeout_seconds") or None)
        return cls(client, store, **kwargs)

    # ---------- Queue ----------
    def enqueue(self, documents: Iterable[Document]) -> List[str]:
        new = [QueueItem(id=str(uuid.uuid4()), document=doc) for doc in documents]
        if not new:
            return []
        with self._lock:
            self._items.extend(new)
        logger.info("Enqueued %d document(s)", len(new))
        self._notify()
        return [item.id for item in new]

    def requeue(self, item_id: str) -> bool:
        """Put a failed item back to pending so the next run picks it up."""
        with self._lock:
            item = next((i for i in self._items if i.id == item_id), None)
            if item is None or item.state != FAILED:
                return False
            item.transition(PENDING)
            item.attempt = 0
            item.last_error = None
            item.rate_limited = False
        self._notify()
        return True

    def status(self) -> Tuple[ItemStatus, ...]:
        with self._lock:
            return tuple(item.snapshot() for item in self._items)

    def counts(self) -> Dict[str, int]:
        snapshot = self.status()
        out = {state: 0 for state in ITEM_STATES}
        for item in snapshot:
            out[item.state] += 1
        out["duplicates"] = sum(1 for item in snapshot if item.duplicate)
        return out

    def subscribe(self, callback: Callable[[Tuple[ItemStatus, ...]], None]):
        self._listeners.append(callback)

    @property
    def running(self) -> bool:
        return self._running.locked()

    def cancel(self):
        self._cancel.set()

    # ---------- Run ----------
    def run(self) -> Tuple[ItemStatus, ...]:
        if not self._running.acquire(blocking=False):
            raise SchedulerBusy("A batch run is already in progress")
        self._cancel.clear()
        try:
            with self._lock:
                eligible = [item for item in self._items if item.eligible]
            logger.info("Batch run started: %d eligible item(s)", len(eligible))

            for n, item in enumerate(eligible):
                if self._cancel.is_set():
                    logger.info("Batch cancelled before %s", item.document.name)
                    break
                self._process(item)
                if n < len(eligible) - 1 and not self._pause(self.inter_item_delay):
                    logger.info("Batch cancelled during throttle delay")
                    break
        finally:
            self._running.release()

        logger.info("Batch run finished: %s", self.counts())
        return self.status()

    def _pause(self, seconds: float) -> bool:
        """Wait `seconds`; returns False if the run was cancelled."""
        if seconds > 0:
            if self._sleep is not None:
                self._sleep(seconds)
            else:
                self._cancel.wait(seconds)
        return not self._cancel.is_set()

    def _process(self, item: QueueItem):
        name = item.document.name
        with self._lock:
            item.transition(PROCESSING)
            item.attempt = 0
            item.last_error = None
            item.rate_limited = False
        self._notify()

        while True:
            logger.info("Extracting %s (attempt %d)", name, item.attempt + 1)
            try:
                result = self.client.extract(
                    item.document.content, item.document.media_type, timeout=self.extract_timeout
                )
                record = as_record(result)
            except Exception as e:
                if not is_rate_limit(e):
                    logger.warning("Extraction failed for %s: %s", name, e)
                    self._fail(item, str(e) or type(e).__name__, rate_limited=False)
                    return
                if not self.policy.should_retry(item.attempt):
                    logger.warning("Giving up on %s after %d retries", name, item.attempt)
                    self._fail(item, "Failed: Rate limit exceeded", rate_limited=True)
                    return

                attempt = item.attempt + 1
                wait = self.policy.delay(attempt)
                with self._lock:
                    item.transition(PROCESSING)
                    item.attempt = attempt
                    item.last_error = (
                        f"Rate limit hit... waiting {wait:g}s "
                        f"(retry {attempt}/{self.policy.max_retries})"
                    )
                logger.info("%s: %s", name, item.last_error)
                self._notify()
                if not self._pause(wait):
                    self._fail(item, "Rate limit hit; retry cancelled", rate_limited=True)
                    return
                continue

            self._complete(item, record)
            return

    def _complete(self, item: QueueItem, record: Record):
        duplicate = self.store.is_duplicate(record)
        if duplicate:
            logger.warning("%s looks like a duplicate of an existing %s", item.document.name, record.kind)
        record_id = self.store.save(
            record, item.document.name, item.document.content, item.document.media_type
        )
        with self._lock:
            item.transition(COMPLETED)
            item.last_error = None
            item.duplicate = duplicate
            item.record_id = record_id
        logger.info("Completed %s -> record %s", item.document.name, record_id)
        self._notify()

    def _fail(self, item: QueueItem, message: str, rate_limited: bool):
        with self._lock:
            item.transition(FAILED)
            item.last_error = message
            item.rate_limited = rate_limited
        self._notify()

    def _notify(self):
        if not self._listeners:
            return
        snapshot = self.status()
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Status listener %r failed", callback)
