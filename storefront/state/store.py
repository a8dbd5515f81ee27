"""Reconciling state store shared by the cart and the wishlist.

A store owns the list of items of one signed-in user. UI actions change the
list right away (optimistically) and then write to the remote collection;
a failed write puts the list back exactly as it was. A standing
subscription delivers the authoritative list after every remote change.

Snapshots replace the list wholesale, except for items that still have a
mutation in flight: those keep their optimistic version until the write
resolves, so a snapshot taken just before our own write cannot undo it on
screen. With nothing pending the last snapshot simply wins.

All methods must run on the event loop that owns the store. Optimistic
changes happen before the first ``await`` of a mutation, so two quick taps
always see each other. Remote writes are serialized in call order by a
lock, which lets a follow-up write use the id the backend issued for an
earlier insert.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

from storefront.db.port import Document, PortFactory, RemoteCollectionPort
from storefront.errors import (
    ItemNotFound,
    LoadCancelled,
    NotAuthenticated,
    RemoteFetchFailed,
    RemoteWriteFailed,
    StoreError,
    StoreNotReady,
)
from storefront.state.subscription import SubscriptionManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    LIVE = "live"


class MutationKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(eq=False)
class PendingMutation(Generic[T]):
    kind: MutationKind
    local_id: str
    index: int
    before: Optional[T] = None
    after: Optional[T] = None


class ReconcilingStore(Generic[T]):
    """Optimistic list of items for one identity, reconciled with a remote collection.

    Subclasses describe their item type through the hooks below: how items
    are parsed, which items count as duplicates, and what a duplicate insert
    turns into.
    """

    name = "store"
    item_type: Any = None

    def __init__(self, port_factory: PortFactory):
        self._port_factory = port_factory
        self._port: Optional[RemoteCollectionPort] = None
        self._identity: Optional[str] = None
        self._items: List[T] = []
        self._last_docs: Optional[List[Document]] = None
        self._pending: List[PendingMutation[T]] = []
        self._generation = 0
        self._loaded = False
        self._load_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self._listeners: List[Callable[["ReconcilingStore[T]"], None]] = []
        self._subscription = SubscriptionManager(
            self._handle_snapshot,
            self._handle_stream_error,
            name=f"{self.name} subscription",
        )
        self.is_loading = False
        self.last_error: Optional[StoreError] = None

    # ---------------- hooks ----------------

    def _from_document(self, doc: Document) -> T:
        return self.item_type.from_document(doc)

    def _to_document(self, item: T) -> Document:
        return item.to_document()

    def _dedup_key(self, item: T) -> Hashable:
        return item.product_id

    def _merge_insert(self, existing: T, incoming: T) -> Optional[T]:
        """What inserting ``incoming`` does to its duplicate ``existing``.

        Return the replacement item, or None when the insert is a no-op.
        May raise ``StoreError`` to reject the insert.
        """
        return None

    def _check_new(self, item: T) -> None:
        """Validate a brand-new item before it is shown; may raise ``StoreError``."""

    def _revert(self, current: T, mutation: PendingMutation[T]) -> T:
        return mutation.before

    def _update_fields(self, item: T) -> Document:
        return self._to_document(item)

    def _document_id_for(self, item: T) -> Optional[str]:
        return None

    def _prepare(self, items: List[T]) -> List[T]:
        return items

    # ---------------- observable state ----------------

    @property
    def items(self) -> Tuple[T, ...]:
        return tuple(self._items)

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    @property
    def state(self) -> StoreState:
        if self._identity is None:
            return StoreState.EMPTY
        if self._loaded:
            return StoreState.LIVE
        if self._load_task is not None:
            return StoreState.LOADING
        return StoreState.EMPTY

    @property
    def subscription_active(self) -> bool:
        return self._subscription.is_active

    @property
    def pending_mutations(self) -> Tuple[PendingMutation[T], ...]:
        return tuple(self._pending)

    def is_member(self, product_id: str) -> bool:
        return any(it.product_id == product_id for it in self._items)

    def clear_error(self) -> None:
        self.last_error = None

    def add_listener(self, callback: Callable[["ReconcilingStore[T]"], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _notify(self) -> None:
        for cb in list(self._listeners):
            try:
                cb(self)
            except Exception:
                logger.exception("%s listener failed", self.name)

    def _fail(self, error: StoreError, cause: Optional[BaseException] = None) -> bool:
        if cause is not None:
            error.__cause__ = cause
            logger.warning("%s: %s (%s)", self.name, error.message, cause)
        else:
            logger.warning("%s: %s", self.name, error.message)
        self.last_error = error
        self._notify()
        return False

    # ---------------- lookups ----------------

    def _index_of_local(self, local_id: str) -> Optional[int]:
        for i, it in enumerate(self._items):
            if it.local_id == local_id:
                return i
        return None

    def _index_of_id(self, item_id: str) -> Optional[int]:
        for i, it in enumerate(self._items):
            if it.id == item_id:
                return i
        return None

    def _index_of_duplicate(self, item: T) -> Optional[int]:
        key = self._dedup_key(item)
        for i, it in enumerate(self._items):
            if self._dedup_key(it) == key:
                return i
        return None

    # ---------------- load / reset ----------------

    async def load(self, identity: Optional[str], force_refresh: bool = False) -> None:
        """Fetch the authoritative list for ``identity`` and keep it live.

        No-op when a load is already running or the subscription already
        serves this identity, unless ``force_refresh``. A newer load cancels
        an older one. ``identity=None`` means signed out and resets the store.
        """
        if identity is None:
            self.reset()
            return

        if identity != self._identity:
            self.reset(identity)
        elif not force_refresh and (self._load_task is not None or self._subscription.is_active_for(identity)):
            return

        if self._load_task is not None and not self._load_task.done():
            logger.debug("%s: superseding in-flight load", self.name)
            self._load_task.cancel()

        task = asyncio.create_task(
            self._run_load(identity, self._generation, self._port),
            name=f"{self.name} load:{identity}",
        )
        self._load_task = task
        await asyncio.wait({task})

    async def _run_load(self, identity: str, generation: int, port: RemoteCollectionPort) -> None:
        logger.info("%s: loading for %s", self.name, identity)
        self.is_loading = True
        self._notify()
        try:
            docs = await port.fetch_all()
            if generation != self._generation:
                raise LoadCancelled()
        except asyncio.CancelledError:
            logger.debug("%s: load for %s cancelled", self.name, identity)
            raise
        except LoadCancelled:
            logger.debug("%s: load for %s superseded", self.name, identity)
            return
        except Exception as exc:
            self._fail(RemoteFetchFailed(), exc)
            return
        finally:
            if self._load_task is asyncio.current_task():
                self._load_task = None
                self.is_loading = False
                self._notify()

        self._apply_documents(docs)
        self._loaded = True
        # a successful fetch answers an earlier fetch failure, not a failed mutation
        if isinstance(self.last_error, RemoteFetchFailed):
            self.last_error = None
        self._subscription.start(identity, port.subscribe)
        self._notify()

    def reset(self, identity: Optional[str] = None) -> None:
        """Drop everything belonging to the current identity.

        Cancels the in-flight load, stops the subscription and empties the
        list. Writes still suspended for the old identity finish against the
        old collection but no longer touch this store. With ``identity`` the
        store is rescoped to that user (not loaded yet).
        """
        self._generation += 1
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None
        self._subscription.stop()
        self._write_lock = asyncio.Lock()
        self._identity = identity
        self._port = self._port_factory(identity) if identity is not None else None
        self._loaded = False
        self._items = []
        self._last_docs = None
        self._pending = []
        self.is_loading = False
        self.last_error = None
        self._notify()

    # ---------------- snapshots ----------------

    def _parse(self, docs: List[Document]) -> List[T]:
        items = []
        for doc in docs:
            try:
                items.append(self._from_document(doc))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("%s: skipping malformed document %s: %s", self.name, doc.get("id"), exc)
        return self._prepare(items)

    def _handle_snapshot(self, docs: List[Document]) -> None:
        # the first emission of a new subscription repeats what the load fetched
        if docs == self._last_docs:
            logger.debug("%s: snapshot unchanged, skipped", self.name)
            return
        self._apply_documents(docs)
        self._notify()

    def _handle_stream_error(self, exc: Exception) -> None:
        self._fail(RemoteFetchFailed("Lost connection to live updates"), exc)

    def _apply_documents(self, docs: List[Document]) -> None:
        self._last_docs = docs
        self._items = self._reconcile(self._parse(docs))

    def _reconcile(self, fresh: List[T]) -> List[T]:
        """Replace the list with ``fresh``, keeping items with writes in flight."""
        pending_local = {m.local_id for m in self._pending if m.kind is not MutationKind.REMOVE}
        removed_ids = {
            m.before.id for m in self._pending if m.kind is MutationKind.REMOVE and m.before.id is not None
        }
        by_id: Dict[str, T] = {it.id: it for it in self._items if it.id is not None}
        unsaved: Dict[Hashable, T] = {self._dedup_key(it): it for it in self._items if it.id is None}

        result: List[T] = []
        used = set()
        for item in fresh:
            if item.id in removed_ids:
                continue
            local = by_id.get(item.id) or unsaved.get(self._dedup_key(item))
            if local is not None and local.local_id in used:
                local = None
            if local is not None:
                used.add(local.local_id)
            if local is None:
                result.append(item)
            elif local.local_id in pending_local:
                result.append(local if local.id is not None else replace(local, id=item.id))
            else:
                result.append(replace(item, local_id=local.local_id))

        placed = {it.local_id for it in result}
        for i, it in enumerate(self._items):
            if it.local_id in pending_local and it.local_id not in placed:
                result.insert(min(i, len(result)), it)
        return result

    # ---------------- mutations ----------------

    def _can_mutate(self) -> bool:
        if self._identity is None:
            return self._fail(NotAuthenticated())
        if self.state is StoreState.EMPTY:
            return self._fail(StoreNotReady())
        return True

    async def _ready(self) -> bool:
        """Check the store accepts mutations, waiting out a first load in progress.

        Duplicate checks need the fetched list, so nothing is applied while
        the store has never been loaded. Returns False if the store was reset
        meanwhile.
        """
        if not self._can_mutate():
            return False
        generation = self._generation
        while not self._loaded and self._load_task is not None and not self._load_task.done():
            await asyncio.wait({self._load_task})
        if generation != self._generation:
            return False
        return self._can_mutate()

    async def insert(self, item: T) -> bool:
        """Add ``item``, or fold it into the item it duplicates.

        The list changes before the remote write; a failed write restores it.
        """
        if not await self._ready():
            return False
        if not item.product_id:
            return self._fail(ItemNotFound("Product ID not found"))

        idx = self._index_of_duplicate(item)
        try:
            if idx is not None:
                existing = self._items[idx]
                merged = self._merge_insert(existing, item)
                if merged is None:
                    return True
                mutation = PendingMutation(MutationKind.UPDATE, existing.local_id, idx, before=existing, after=merged)
            else:
                self._check_new(item)
                mutation = PendingMutation(MutationKind.INSERT, item.local_id, 0, after=item)
        except StoreError as exc:
            return self._fail(exc)

        if mutation.kind is MutationKind.UPDATE:
            self._items[idx] = mutation.after
        else:
            self._items.insert(0, item)
        self._pending.append(mutation)
        self.last_error = None
        self._notify()
        return await self._commit(mutation)

    async def remove(self, item: T) -> bool:
        if not await self._ready():
            return False
        idx = self._index_of_id(item.id) if item.id is not None else None
        if idx is None:
            return self._fail(ItemNotFound())

        removed = self._items.pop(idx)
        mutation = PendingMutation(MutationKind.REMOVE, removed.local_id, idx, before=removed)
        self._pending.append(mutation)
        self.last_error = None
        self._notify()
        return await self._commit(mutation)

    async def clear(self) -> bool:
        """Delete every item shown when called, one remote delete at a time.

        Writes already queued (an insert still being saved) land first, so
        their rows have ids by the time the sweep reaches them. Not
        transactional: a failure stops the sweep and whatever was already
        deleted stays deleted.
        """
        if not await self._ready():
            return False
        generation, port = self._generation, self._port
        requested = {it.local_id for it in self._items}

        async with self._write_lock:
            if generation != self._generation:
                return False
            for item in [it for it in self._items if it.local_id in requested]:
                if item.id is None:
                    continue
                try:
                    await port.delete(item.id)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    return self._fail(RemoteWriteFailed(), exc)
                if generation != self._generation:
                    return False
                self._items = [it for it in self._items if it.id != item.id]
                self._notify()

        if any(it.local_id in requested for it in self._items):
            return self._fail(StoreNotReady("Some items are still being saved, try again"))
        return True

    async def _commit(self, mutation: PendingMutation[T]) -> bool:
        generation, port = self._generation, self._port
        try:
            async with self._write_lock:
                if generation != self._generation:
                    return False
                new_id = await self._write(port, mutation)
        except asyncio.CancelledError:
            raise
        except StoreError as exc:
            if generation != self._generation:
                return False
            self._rollback(mutation)
            return self._fail(exc)
        except Exception as exc:
            if generation != self._generation:
                return False
            self._rollback(mutation)
            return self._fail(RemoteWriteFailed(), exc)
        finally:
            if mutation in self._pending:
                self._pending.remove(mutation)

        if generation != self._generation:
            return True
        if new_id is not None:
            idx = self._index_of_local(mutation.local_id)
            if idx is not None and self._items[idx].id is None:
                self._items[idx] = replace(self._items[idx], id=new_id)
        self._notify()
        return True

    async def _write(self, port: RemoteCollectionPort, mutation: PendingMutation[T]) -> Optional[str]:
        if mutation.kind is MutationKind.REMOVE:
            await port.delete(mutation.before.id)
            return None

        # the item may have changed (or vanished) while waiting for the lock
        idx = self._index_of_local(mutation.local_id)
        if idx is None:
            raise ItemNotFound()
        current = self._items[idx]

        doc_id = self._document_id_for(current)
        if mutation.kind is MutationKind.INSERT and (doc_id is not None or current.id is None):
            return await port.add(self._to_document(current), doc_id)
        if current.id is None:
            raise ItemNotFound()
        await port.update(current.id, self._update_fields(current))
        return None

    def _rollback(self, mutation: PendingMutation[T]) -> None:
        if mutation.kind is MutationKind.INSERT:
            idx = self._index_of_local(mutation.local_id)
            if idx is not None:
                del self._items[idx]
        elif mutation.kind is MutationKind.UPDATE:
            idx = self._index_of_local(mutation.local_id)
            if idx is not None:
                self._items[idx] = self._revert(self._items[idx], mutation)
        elif self._index_of_id(mutation.before.id) is None:
            self._items.insert(min(mutation.index, len(self._items)), mutation.before)
        logger.info("%s: rolled back %s of %s", self.name, mutation.kind.value, mutation.local_id)
