from dataclasses import dataclass
from typing import Dict, Literal, Optional

from loguru import logger
from pydantic import BaseModel

from .errors import BackendError, MalformedIdError
from .models import ROOT_ID, is_valid_id, parent_or_none
from .sync import SyncCoordinator

DragKind = Literal["collection", "request", "root"]


class DragItem(BaseModel):
    id: str
    type: Optional[DragKind] = None
    # drop-zone metadata: the collection a nested drop target sits in
    collection_id: Optional[str] = None


class DragEndEvent(BaseModel):
    active: DragItem
    over: Optional[DragItem] = None


@dataclass
class MoveIntent:
    kind: Literal["collection", "request"]
    item_id: str
    target_id: Optional[str]  # None means top level


def _check_id(value: str, what: str, operation: str):
    if not is_valid_id(value):
        raise MalformedIdError(
            f"Invalid {what} id: {value!r}",
            operation=operation,
            context={what: value},
        )


def plan(event: DragEndEvent) -> Optional[MoveIntent]:
    """Resolve a finished drag into a move, without touching any state.

    Returns None when the drop changes nothing (no target, or dropped on
    itself). Raises MalformedIdError when the event carries ids that are
    neither UUIDs nor ``root``.
    """
    active, over = event.active, event.over
    if over is None or active.id == over.id:
        return None
    _check_id(active.id, "active", "drag_end")

    if active.type == "collection":
        target = None
        if over.type == "collection":
            _check_id(over.id, "over", "drag_end")
            target = over.id
        elif over.collection_id:
            _check_id(over.collection_id, "collection", "drag_end")
            target = over.collection_id
        return MoveIntent("collection", active.id, parent_or_none(target))

    if active.type == "request":
        target = ROOT_ID
        if over.collection_id:
            _check_id(over.collection_id, "collection", "drag_end")
            target = over.collection_id
        elif over.type == "collection":
            _check_id(over.id, "over", "drag_end")
            target = over.id
        return MoveIntent("request", active.id, parent_or_none(target))

    return None


class MoveCoordinator:
    """Collection and request relocation, from drag gestures or direct calls.

    Moves are applied to the local tree first and reverted if the backend
    refuses them. A successful collection move is followed by a full reload
    of the collection list.
    """

    def __init__(self, sync: SyncCoordinator):
        self.sync = sync
        self.active_drag_id: Optional[str] = None
        self.drag_over_target: Optional[str] = None

    @property
    def tree(self):
        return self.sync.tree

    @property
    def tabs(self):
        return self.sync.tabs

    # --- Drag feedback ---
    def drag_start(self, item_id: str):
        self.active_drag_id = item_id
        self.sync.changed()

    def drag_over(self, target_id: Optional[str]):
        self.drag_over_target = target_id
        self.sync.changed()

    async def drag_end(self, event: DragEndEvent) -> Optional[MoveIntent]:
        try:
            intent = plan(event)
            if intent is None:
                return None
            logger.bind(operation="drag_end").debug(
                f"Moving {intent.kind} {intent.item_id} to {intent.target_id or ROOT_ID}"
            )
            if intent.kind == "collection":
                moved = await self.move_collection(intent.item_id, intent.target_id)
            else:
                moved = await self.move_request(intent.item_id, intent.target_id)
            return intent if moved else None
        finally:
            self.active_drag_id = None
            self.drag_over_target = None
            self.sync.changed()

    # --- Moves ---
    async def move_collection(self, collection_id: str, new_parent_id: Optional[str]) -> bool:
        """Reparent a collection. Returns False when nothing had to move."""
        _check_id(collection_id, "collection", "move_collection")
        if new_parent_id is not None:
            _check_id(new_parent_id, "parent", "move_collection")
        parent = parent_or_none(new_parent_id)
        current = self.tree.get(collection_id)
        if current is None or (parent is not None and parent not in self.tree):
            return False
        self.tree.ensure_can_reparent(collection_id, parent)
        if current.parent_id == parent:
            return False

        snap = self.tree.snapshot(collection_ids=[collection_id])
        self.tree.upsert_collection(current.model_copy(update={"parent_id": parent}))
        await self.sync.commit(
            "move_collection",
            self.sync.backend.move_collection(collection_id, parent),
            lambda: self.tree.restore(snap),
        )
        try:
            await self.sync.load_collections()
        except BackendError:
            logger.bind(operation="move_collection", status="stale").warning(
                "Collection list not refreshed after move; keeping local tree"
            )
        return True

    async def move_request(self, request_id: str, new_collection_id: Optional[str]) -> bool:
        """Move a request between collections, keeping caches and open tabs in step."""
        _check_id(request_id, "request", "move_request")
        if new_collection_id is not None:
            _check_id(new_collection_id, "collection", "move_request")
        target = parent_or_none(new_collection_id)
        if target is not None and target not in self.tree:
            return False

        cached = self.tree.find_request(request_id)
        tab = self.tabs.find_by_request_id(request_id)
        source = cached or (tab.request if tab else None)
        if source is not None and source.collection_id == target:
            return False

        keys = [k for k, bucket in self.tree.request_cache.items() if any(r.id == request_id for r in bucket)]
        keys.append(target or ROOT_ID)
        snap = self.tree.snapshot(bucket_keys=keys)
        before: Dict[str, Optional[str]] = {
            t.id: t.request.collection_id for t in self.tabs.tabs if t.request.id == request_id
        }
        if cached is not None:
            self.tree.relocate_request_in_cache(request_id, cached.collection_id, target)
        self.tabs.patch_request(request_id, collection_id=target)

        def rollback():
            self.tree.restore(snap)
            for tab_id, collection_id in before.items():
                current = self.tabs.get(tab_id)
                if current is not None and current.request.id == request_id:
                    self.tabs.update_tab(
                        tab_id, request=current.request.model_copy(update={"collection_id": collection_id})
                    )

        await self.sync.commit("move_request", self.sync.backend.move_request(request_id, target), rollback)
        return True
