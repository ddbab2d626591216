"""
Change Feed - live subscriptions over stored documents.

Stores publish every committed write here; subscribers get an initial
snapshot of the documents matching their query, then incremental updates
(added / modified / removed relative to that query).

The feed is an explicit object handed to the stores, and every
registration returns a Subscription handle whose unsubscribe() is the
only way to stop delivery. Unsubscribing never touches the store.
"""
import enum
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

from delivery_market.core.logging import get_logger

logger = get_logger(__name__)

D = TypeVar("D")


class ChangeType(str, enum.Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class Change(Generic[D]):
    change_type: ChangeType
    key: Hashable
    document: D


@dataclass(frozen=True)
class FeedUpdate(Generic[D]):
    """What a subscriber sees: the full matching set plus what changed."""
    documents: list[D]
    changes: list[Change[D]]
    is_initial: bool = False


OnChange = Callable[[FeedUpdate], None]
OnError = Callable[[Exception], None]


class Subscription(Generic[D]):
    """Handle for one live query. Call unsubscribe() to stop updates."""

    def __init__(
        self,
        feed: "ChangeFeed",
        collection: str,
        matches: Callable[[D], bool],
        key_of: Callable[[D], Hashable],
        on_change: OnChange,
        on_error: Optional[OnError] = None,
        sort_key: Optional[Callable[[D], Any]] = None,
        reverse: bool = False,
    ):
        self._feed = feed
        self.collection = collection
        self._matches = matches
        self._key_of = key_of
        self._on_change = on_change
        self._on_error = on_error
        self._sort_key = sort_key
        self._reverse = reverse
        self._documents: dict[Hashable, D] = {}
        self._started = False
        self._buffer: list[D] = []
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._buffer.clear()
        self._feed._remove(self)

    def _current(self) -> list[D]:
        docs = list(self._documents.values())
        if self._sort_key is not None:
            docs.sort(key=self._sort_key, reverse=self._reverse)
        return docs

    def _emit(self, update: FeedUpdate) -> None:
        try:
            self._on_change(update)
        except Exception as e:
            # באג אצל המנוי לא מפיל את הכותב
            logger.error(
                "Subscriber callback failed",
                extra_data={"collection": self.collection, "error": str(e)},
                exc_info=True,
            )
            self.fail(e, close=False)

    def fail(self, error: Exception, close: bool = True) -> None:
        if close:
            self.unsubscribe()
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception:
                logger.error(
                    "Subscriber error handler failed",
                    extra_data={"collection": self.collection},
                    exc_info=True,
                )

    def start(self, initial: list[D]) -> None:
        """Deliver the initial snapshot, then replay writes seen while it loaded."""
        if not self._active:
            return
        for document in initial:
            if self._matches(document):
                self._documents[self._key_of(document)] = document
        self._started = True
        self._emit(FeedUpdate(documents=self._current(), changes=[], is_initial=True))
        buffered, self._buffer = self._buffer, []
        for document in buffered:
            self._apply(document)

    def _apply(self, document: D) -> None:
        if not self._active:
            return
        if not self._started:
            self._buffer.append(document)
            return

        key = self._key_of(document)
        was_member = key in self._documents
        is_member = self._matches(document)

        if is_member:
            self._documents[key] = document
            change_type = ChangeType.MODIFIED if was_member else ChangeType.ADDED
        elif was_member:
            del self._documents[key]
            change_type = ChangeType.REMOVED
        else:
            return

        self._emit(FeedUpdate(
            documents=self._current(),
            changes=[Change(change_type=change_type, key=key, document=document)],
        ))


class ChangeFeed:
    """In-process fan-out of committed document writes to live subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}

    def register(
        self,
        collection: str,
        matches: Callable[[Any], bool],
        key_of: Callable[[Any], Hashable],
        on_change: OnChange,
        on_error: Optional[OnError] = None,
        sort_key: Optional[Callable[[Any], Any]] = None,
        reverse: bool = False,
    ) -> Subscription:
        subscription = Subscription(
            self,
            collection,
            matches,
            key_of,
            on_change,
            on_error=on_error,
            sort_key=sort_key,
            reverse=reverse,
        )
        self._subscriptions.setdefault(collection, []).append(subscription)
        logger.debug(
            "Subscription registered",
            extra_data={"collection": collection, "count": self.subscriber_count(collection)},
        )
        return subscription

    def publish(self, collection: str, document: Any) -> None:
        # copy: callbacks may unsubscribe while we iterate
        for subscription in list(self._subscriptions.get(collection, ())):
            subscription._apply(document)

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscriptions.get(collection, ()))

    def _remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.collection, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
