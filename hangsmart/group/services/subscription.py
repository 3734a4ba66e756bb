"""Live, cancellable views over a single group document."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any, Optional

from google.api_core import exceptions as google_exceptions

from hangsmart.errors import AppError, NotFoundError, StorageReadError
from hangsmart.group.models import Group
from hangsmart.group.utils import group_from_snapshot

if TYPE_CHECKING:
    from google.cloud.firestore_v1.document import DocumentReference

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Group], None]
ErrorCallback = Callable[[AppError], None]

_UPDATE = "update"
_ERROR = "error"
_CLOSED = "closed"


class GroupSubscription:
    """A stream of Group snapshots fed by a Firestore snapshot listener.

    The current snapshot is delivered right after subscribing, then one per
    change, in the order storage applied them. A snapshot whose update time is
    not newer than the last one delivered is dropped. Iteration ends once
    :meth:`close` is called, and raises the failure if the subscription breaks.

    With ``on_update``/``on_error`` the snapshots are handed to the callbacks on
    the listener thread instead, and the subscription is not iterable.
    """

    def __init__(
        self,
        group_ref: DocumentReference,
        on_update: Optional[UpdateCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.group_id = group_ref.id
        self._on_update = on_update
        self._on_error = on_error
        self._queue: queue.Queue[tuple[str, Any]] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._cancelled = False
        self._last_update_time: Any = None
        self._watch: Any = None

        try:
            watch = group_ref.on_snapshot(self._handle_snapshot)
        except google_exceptions.GoogleAPIError as e:
            raise StorageReadError(f"Could not watch group {self.group_id}.") from e

        with self._lock:
            closed_early = self._closed
            if not closed_early:
                self._watch = watch
        if closed_early:
            watch.unsubscribe()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop delivering snapshots. Safe to call more than once."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._closed = True
            watch, self._watch = self._watch, None
        if watch is not None:
            watch.unsubscribe()
        self._queue.put((_CLOSED, None))

    unsubscribe = close

    def updates(self, timeout: float | None = None) -> Iterator[Group | None]:
        """Yield snapshots as they arrive, and ``None`` after each idle ``timeout``."""
        if self._on_update is not None:
            raise RuntimeError("A callback subscription cannot be iterated.")
        while True:
            try:
                kind, payload = self._queue.get(timeout=timeout)
            except queue.Empty:
                yield None
                continue
            if kind == _ERROR:
                raise payload
            if kind == _CLOSED or self._cancelled:
                return
            yield payload

    def __iter__(self) -> Iterator[Group | None]:
        return self.updates()

    def __enter__(self) -> GroupSubscription:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _handle_snapshot(self, doc_snapshots: list[Any], changes: Any, read_time: Any) -> None:
        if not doc_snapshots:
            self._fail(NotFoundError(f"Group {self.group_id} no longer exists."))
            return

        for snapshot in doc_snapshots:
            if not snapshot.exists:
                self._fail(NotFoundError(f"Group {self.group_id} no longer exists."))
                return

            update_time = getattr(snapshot, "update_time", None)
            with self._lock:
                if self._closed:
                    return
                if (
                    update_time is not None
                    and self._last_update_time is not None
                    and update_time <= self._last_update_time
                ):
                    logger.debug("Dropping stale snapshot of group %s", self.group_id)
                    continue
                if update_time is not None:
                    self._last_update_time = update_time

            try:
                group = group_from_snapshot(snapshot)
            except (TypeError, ValueError) as e:
                self._fail(StorageReadError(f"Unreadable snapshot of group {self.group_id}: {e}"))
                return
            self._deliver(group)

    def _deliver(self, group: Group) -> None:
        if self._on_update is not None:
            self._on_update(group)
        else:
            self._queue.put((_UPDATE, group))

    def _fail(self, error: AppError) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            watch, self._watch = self._watch, None
        logger.warning("Subscription to group %s failed: %s", self.group_id, error.message)
        if watch is not None:
            watch.unsubscribe()
        if self._on_error is not None:
            self._on_error(error)
        else:
            self._queue.put((_ERROR, error))
