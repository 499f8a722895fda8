"""
Cache Layer - Local, watch-driven mirrors of remote objects.

Each watched kind gets an ``Informer`` that lists the kind once, applies the
listing to an in-memory ``Indexer`` and then follows a watch stream from the
listing's resource version. Registered event handlers are told about every
add, update and delete in the order the events were received. Readers use a
``Lister`` for synchronous lookups.

Similar to client-go informers, a watch that expires triggers a full relist;
objects that disappeared between two listings are reported as deletes wrapped
in ``DeletedFinalStateUnknown``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Tuple,
)

from models import DecodeError, meta_namespace_key

logger = logging.getLogger(__name__)

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"
ERROR = "ERROR"


class NotFoundError(LookupError):
    """Raised by listers when an object is not in the cache."""

    def __init__(self, kind: str, key: str):
        super().__init__(f'{kind} "{key}" not found')
        self.kind = kind
        self.key = key


class WatchExpired(Exception):
    """The watch can no longer be resumed and the kind must be relisted."""


@dataclass
class DeletedFinalStateUnknown:
    """
    Tombstone for an object whose deletion was missed by the watch.

    ``obj`` is the last state held in the cache and may be stale.
    """

    key: str
    obj: Any


class ListWatch(Protocol):
    """Source of objects for one kind."""

    async def list(self) -> Tuple[List[Dict[str, Any]], str]:
        """Return every object of the kind and the listing's resource version."""
        ...

    def watch(self, resource_version: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        """Yield ``(event_type, object)`` pairs newer than ``resource_version``."""
        ...


@dataclass
class ResourceEventHandler:
    """Callbacks invoked by an informer; any of them may be omitted."""

    on_add: Optional[Callable[[Any], None]] = None
    on_update: Optional[Callable[[Any, Any], None]] = None
    on_delete: Optional[Callable[[Any], None]] = None


class Indexer:
    """Thread-unsafe keyed store; only the owning informer writes to it."""

    def __init__(self, key_func: Callable[[Any], str] = meta_namespace_key):
        self._items: Dict[str, Any] = {}
        self._key_func = key_func

    def __len__(self) -> int:
        return len(self._items)

    def key_for(self, obj: Any) -> str:
        return self._key_func(obj)

    def add(self, obj: Any) -> Optional[Any]:
        """Insert or replace ``obj``; returns the previous object, if any."""
        key = self._key_func(obj)
        old = self._items.get(key)
        self._items[key] = obj
        return old

    def delete(self, obj: Any) -> Optional[Any]:
        return self._items.pop(self._key_func(obj), None)

    def get_by_key(self, key: str) -> Tuple[Optional[Any], bool]:
        obj = self._items.get(key)
        return obj, obj is not None

    def list(self) -> List[Any]:
        return list(self._items.values())

    def list_keys(self) -> List[str]:
        return list(self._items.keys())


class Lister:
    """Read-only namespace/name lookups against an indexer."""

    def __init__(self, kind: str, indexer: Indexer):
        self.kind = kind
        self._indexer = indexer

    def get(self, namespace: str, name: str) -> Any:
        """
        Return the cached object.

        Raises:
            NotFoundError: If no object with that namespace and name is cached
        """
        key = f"{namespace}/{name}" if namespace else name
        obj, found = self._indexer.get_by_key(key)
        if not found:
            raise NotFoundError(self.kind, key)
        return obj

    def list(self, namespace: Optional[str] = None) -> List[Any]:
        items = self._indexer.list()
        if namespace is None:
            return items
        return [obj for obj in items if obj.metadata.namespace == namespace]


class Informer:
    """
    Keeps an indexer in sync with a remote kind and fans out change events.

    Args:
        kind: Kind name, used in logs and errors
        list_watch: Source of list results and watch events
        decode: Converts a wire dict into a model object
        retry_delay: Seconds to wait before relisting after a failure
    """

    def __init__(
        self,
        kind: str,
        list_watch: ListWatch,
        decode: Callable[[Dict[str, Any]], Any],
        retry_delay: float = 1.0,
    ):
        self.kind = kind
        self.list_watch = list_watch
        self.decode = decode
        self.retry_delay = retry_delay
        self.indexer = Indexer()
        self.lister = Lister(kind, self.indexer)
        self._handlers: List[ResourceEventHandler] = []
        self._synced = False
        self._resource_version = ""

    def add_event_handler(self, handler: ResourceEventHandler) -> None:
        self._handlers.append(handler)

    def has_synced(self) -> bool:
        return self._synced

    @property
    def last_sync_resource_version(self) -> str:
        return self._resource_version

    async def run(self, stop_event: asyncio.Event) -> None:
        """List and watch until ``stop_event`` is set."""
        logger.info(f"Starting {self.kind} informer")
        while not stop_event.is_set():
            try:
                await self._list_and_watch(stop_event)
            except WatchExpired as e:
                logger.info(f"{self.kind} watch expired, relisting: {e}")
                continue
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error watching {self.kind}: {e}", exc_info=True)

            if stop_event.is_set():
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.retry_delay)
            except asyncio.TimeoutError:
                pass
        logger.info(f"Stopped {self.kind} informer")

    async def _list_and_watch(self, stop_event: asyncio.Event) -> None:
        items, resource_version = await self.list_watch.list()
        self.replace(items)
        self._resource_version = resource_version
        if not self._synced:
            self._synced = True
            logger.info(f"{self.kind} cache synced ({len(self.indexer)} objects)")

        # A watch that ends cleanly is resumed from the last seen version
        while not stop_event.is_set():
            async for event_type, raw in self.list_watch.watch(self._resource_version):
                if stop_event.is_set():
                    return
                self.handle_watch_event(event_type, raw)
            await asyncio.sleep(0)

    def replace(self, raw_items: List[Dict[str, Any]]) -> None:
        """Apply a full listing, emitting events for every difference."""
        seen = set()
        for raw in raw_items:
            obj = self._decode(raw)
            if obj is None:
                # Still listed, so the last decodable state stays cached
                key = self._raw_key(raw)
                if key is not None:
                    seen.add(key)
                continue
            seen.add(self.indexer.key_for(obj))
            self._apply_upsert(obj)

        for key in self.indexer.list_keys():
            if key in seen:
                continue
            obj, _ = self.indexer.get_by_key(key)
            self.indexer.delete(obj)
            self._notify_delete(DeletedFinalStateUnknown(key=key, obj=obj))

    def handle_watch_event(self, event_type: str, raw: Dict[str, Any]) -> None:
        if event_type == ERROR:
            message = raw.get("message", "watch error") if isinstance(raw, dict) else raw
            raise WatchExpired(message)

        obj = self._decode(raw)
        if obj is None:
            if event_type == DELETED:
                self._delete_by_key(self._raw_key(raw))
            return
        if obj.metadata.resource_version:
            self._resource_version = obj.metadata.resource_version

        if event_type in (ADDED, MODIFIED):
            self._apply_upsert(obj)
        elif event_type == DELETED:
            old = self.indexer.delete(obj)
            self._notify_delete(old if old is not None else obj)
        else:
            logger.warning(f"Ignoring unknown {self.kind} watch event type {event_type}")

    def _decode(self, raw: Dict[str, Any]) -> Optional[Any]:
        try:
            return self.decode(raw)
        except DecodeError as e:
            logger.error(f"Dropping undecodable {self.kind}: {e}")
            return None

    @staticmethod
    def _raw_key(raw: Any) -> Optional[str]:
        metadata = raw.get("metadata") if isinstance(raw, dict) else None
        if not isinstance(metadata, dict) or not metadata.get("name"):
            return None
        if metadata.get("namespace"):
            return f"{metadata['namespace']}/{metadata['name']}"
        return metadata["name"]

    def _delete_by_key(self, key: Optional[str]) -> None:
        if key is None:
            return
        old, exists = self.indexer.get_by_key(key)
        if not exists:
            return
        self.indexer.delete(old)
        self._notify_delete(old)

    def _apply_upsert(self, obj: Any) -> None:
        old = self.indexer.add(obj)
        for handler in self._handlers:
            try:
                if old is None:
                    if handler.on_add:
                        handler.on_add(obj)
                elif handler.on_update:
                    handler.on_update(old, obj)
            except Exception as e:
                logger.error(f"{self.kind} event handler failed: {e}", exc_info=True)

    def _notify_delete(self, obj: Any) -> None:
        for handler in self._handlers:
            try:
                if handler.on_delete:
                    handler.on_delete(obj)
            except Exception as e:
                logger.error(f"{self.kind} event handler failed: {e}", exc_info=True)


async def wait_for_cache_sync(
    stop_event: asyncio.Event,
    *synced: Callable[[], bool],
    timeout: Optional[float] = None,
    poll_interval: float = 0.1,
) -> bool:
    """
    Wait until every ``synced`` callable returns True.

    Returns:
        False if ``stop_event`` fired or ``timeout`` elapsed first
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout else None
    while True:
        if all(fn() for fn in synced):
            return True
        if stop_event.is_set():
            return False
        if deadline is not None and loop.time() >= deadline:
            return False
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
        except asyncio.TimeoutError:
            pass
