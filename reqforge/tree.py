from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from .errors import CycleError
from .models import ROOT_ID, Collection, HttpRequest


def bucket_key(collection_id: Optional[str]) -> str:
    """Request-cache key for a collection id; root-level requests live under ROOT_ID."""
    return collection_id or ROOT_ID


@dataclass
class TreeSnapshot:
    order: List[str]
    nodes: Dict[str, Optional[Collection]]
    buckets: Dict[str, Optional[List[HttpRequest]]]
    selected_id: Optional[str] = None
    full: bool = False


@dataclass
class TreeIndex:
    """In-memory collection forest plus the per-collection request cache.

    Collections are stored arena style (id -> record) with an explicit
    children index rebuilt after every structural change. The request cache
    maps a bucket key to an ordered list; a missing key means "not fetched
    yet", never "empty".

    Models held here are never mutated in place; every change swaps in a new
    model, so a snapshot only has to copy the containers.
    """

    _nodes: Dict[str, Collection] = field(default_factory=dict)
    _children: Dict[Optional[str], List[str]] = field(default_factory=dict)
    _requests: Dict[str, List[HttpRequest]] = field(default_factory=dict)
    _loading: Dict[str, bool] = field(default_factory=dict)
    selected_id: Optional[str] = None

    @classmethod
    def from_collections(cls, collections: Iterable[Collection]) -> "TreeIndex":
        tree = cls()
        tree.replace_collections(collections)
        return tree

    # --- Queries ---
    @property
    def collections(self) -> List[Collection]:
        return list(self._nodes.values())

    @property
    def lookup(self) -> Dict[str, Collection]:
        return dict(self._nodes)

    def get(self, collection_id: Optional[str]) -> Optional[Collection]:
        if collection_id is None:
            return None
        return self._nodes.get(collection_id)

    def __contains__(self, collection_id: object) -> bool:
        return collection_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def root_collections(self) -> List[Collection]:
        return [self._nodes[i] for i in self._children.get(None, [])]

    def children_of(self, collection_id: str) -> List[Collection]:
        return [self._nodes[i] for i in self._children.get(collection_id, [])]

    def descendant_ids(self, collection_id: str) -> Set[str]:
        """The node itself plus every transitive child."""
        seen = {collection_id}
        stack = [collection_id]
        while stack:
            current = stack.pop()
            for child in self._children.get(current, []):
                if child not in seen:
                    seen.add(child)
                    stack.append(child)
        return seen

    def ancestor_ids(self, collection_id: str) -> List[str]:
        """Parent chain, nearest first."""
        out: List[str] = []
        seen = {collection_id}
        node = self._nodes.get(collection_id)
        while node is not None and node.parent_id and node.parent_id not in seen:
            seen.add(node.parent_id)
            out.append(node.parent_id)
            node = self._nodes.get(node.parent_id)
        return out

    def path_to(self, collection_id: str) -> List[Collection]:
        """Breadcrumb from the top-level ancestor down to the collection."""
        if collection_id not in self._nodes:
            return []
        ids = list(reversed(self.ancestor_ids(collection_id))) + [collection_id]
        return [self._nodes[i] for i in ids if i in self._nodes]

    def ensure_can_reparent(self, moving_id: str, new_parent_id: Optional[str]):
        if new_parent_id is None or new_parent_id == ROOT_ID:
            return
        if new_parent_id in self.descendant_ids(moving_id):
            raise CycleError(
                f"Cannot move collection {moving_id} into itself or one of its descendants",
                operation="move_collection",
                context={"collection_id": moving_id, "new_parent_id": new_parent_id},
            )

    def select(self, collection_id: Optional[str]) -> bool:
        if collection_id is not None and collection_id not in self._nodes:
            return False
        self.selected_id = collection_id
        return True

    # --- Collection mutations ---
    def _reindex(self):
        children: Dict[Optional[str], List[str]] = {}
        for node in self._nodes.values():
            children.setdefault(node.parent_id, []).append(node.id)
        self._children = children

    def replace_collections(self, collections: Iterable[Collection]):
        self._nodes = {c.id: c for c in collections}
        self._reindex()

    def upsert_collection(self, collection: Collection):
        existing = self._nodes.get(collection.id)
        if existing is None:
            # new collections show first
            self._nodes = {collection.id: collection, **self._nodes}
        else:
            if collection.parent_id != existing.parent_id:
                self.ensure_can_reparent(collection.id, collection.parent_id)
            self._nodes[collection.id] = collection
        self._reindex()

    def remove_collections(self, ids: Iterable[str]) -> List[Collection]:
        """Drop collections, their request buckets and loading flags.

        Clears the selection when it points into the removed set.
        """
        doomed = set(ids)
        removed = [c for c in self._nodes.values() if c.id in doomed]
        self._nodes = {k: v for k, v in self._nodes.items() if k not in doomed}
        for collection_id in doomed:
            self._requests.pop(collection_id, None)
            self._loading.pop(collection_id, None)
        if self.selected_id in doomed:
            self.selected_id = None
        self._reindex()
        return removed

    # --- Request cache ---
    @property
    def request_cache(self) -> Dict[str, List[HttpRequest]]:
        return {k: list(v) for k, v in self._requests.items()}

    def requests_for(self, collection_id: Optional[str]) -> Optional[List[HttpRequest]]:
        bucket = self._requests.get(bucket_key(collection_id))
        return None if bucket is None else list(bucket)

    def is_fetched(self, collection_id: Optional[str]) -> bool:
        return bucket_key(collection_id) in self._requests

    def find_request(self, request_id: str) -> Optional[HttpRequest]:
        for bucket in self._requests.values():
            for request in bucket:
                if request.id == request_id:
                    return request
        return None

    def is_loading(self, collection_id: Optional[str]) -> bool:
        return self._loading.get(bucket_key(collection_id), False)

    @property
    def loading_flags(self) -> Dict[str, bool]:
        return dict(self._loading)

    def set_loading(self, collection_id: Optional[str], loading: bool):
        self._loading[bucket_key(collection_id)] = loading

    def set_requests_for_collection(self, collection_id: Optional[str], requests: Iterable[HttpRequest]):
        self._requests[bucket_key(collection_id)] = list(requests)

    def remove_request_from_caches(self, request_id: str) -> Optional[HttpRequest]:
        removed = None
        for key, bucket in self._requests.items():
            kept = [r for r in bucket if r.id != request_id]
            if len(kept) != len(bucket):
                removed = removed or next(r for r in bucket if r.id == request_id)
                self._requests[key] = kept
        return removed

    def relocate_request_in_cache(
        self, request_id: str, from_id: Optional[str], to_id: Optional[str]
    ) -> Optional[HttpRequest]:
        """Move one cached request between buckets and stamp its new collection_id.

        The target bucket only receives the request if it has already been
        fetched; an unfetched bucket stays absent so the next load is complete.
        """
        source_key = bucket_key(from_id)
        source = self._requests.get(source_key, [])
        request = next((r for r in source if r.id == request_id), None)
        if request is None:
            request = self.find_request(request_id)
            if request is None:
                return None
        self.remove_request_from_caches(request_id)
        target_collection = None if to_id in (None, ROOT_ID) else to_id
        moved = request.model_copy(update={"collection_id": target_collection})
        target_key = bucket_key(target_collection)
        if target_key in self._requests:
            self._requests[target_key] = self._requests[target_key] + [moved]
        return moved

    def rename_request_in_caches(self, request_id: str, name: str) -> int:
        touched = 0
        for key, bucket in self._requests.items():
            if any(r.id == request_id for r in bucket):
                self._requests[key] = [
                    r.model_copy(update={"name": name}) if r.id == request_id else r for r in bucket
                ]
                touched += 1
        return touched

    def replace_request_in_caches(self, request: HttpRequest):
        """Put the authoritative copy of a saved request where it now belongs."""
        target_key = bucket_key(request.collection_id)
        for key, bucket in list(self._requests.items()):
            if key != target_key and any(r.id == request.id for r in bucket):
                self._requests[key] = [r for r in bucket if r.id != request.id]
        bucket = self._requests.get(target_key)
        if bucket is None:
            return
        if any(r.id == request.id for r in bucket):
            self._requests[target_key] = [request if r.id == request.id else r for r in bucket]
        else:
            self._requests[target_key] = bucket + [request]

    # --- Snapshots ---
    def snapshot(
        self,
        collection_ids: Optional[Iterable[str]] = None,
        bucket_keys: Optional[Iterable[str]] = None,
    ) -> TreeSnapshot:
        """Capture the slice of state an action is about to touch.

        With no arguments the whole tree and cache are captured.
        """
        if collection_ids is None and bucket_keys is None:
            return TreeSnapshot(
                order=list(self._nodes),
                nodes=dict(self._nodes),
                buckets={k: list(v) for k, v in self._requests.items()},
                selected_id=self.selected_id,
                full=True,
            )
        buckets: Dict[str, Optional[List[HttpRequest]]] = {}
        for key in bucket_keys or ():
            bucket = self._requests.get(key)
            buckets[key] = None if bucket is None else list(bucket)
        return TreeSnapshot(
            order=list(self._nodes),
            nodes={i: self._nodes.get(i) for i in collection_ids or ()},
            buckets=buckets,
            selected_id=self.selected_id,
        )

    def restore(self, snapshot: TreeSnapshot):
        """Put a captured slice back; entities outside the slice are left as they are now."""
        # loading flags belong to in-flight calls and are never restored
        if snapshot.full:
            self._nodes = dict(snapshot.nodes)
            self._requests = {k: list(v) for k, v in snapshot.buckets.items()}
            self.selected_id = snapshot.selected_id
            self._reindex()
            return
        position = {cid: i for i, cid in enumerate(snapshot.order)}
        returning = []
        for collection_id, node in snapshot.nodes.items():
            if node is None:
                self._nodes.pop(collection_id, None)
            elif collection_id in self._nodes:
                self._nodes[collection_id] = node
            elif collection_id in position:
                returning.append(node)
        if returning:
            # only the returning nodes are placed; everything else keeps its current slot
            ordered = list(self._nodes.values())
            for node in sorted(returning, key=lambda n: position[n.id]):
                at = next(
                    (i for i, c in enumerate(ordered) if position.get(c.id, -1) > position[node.id]),
                    len(ordered),
                )
                ordered.insert(at, node)
            self._nodes = {c.id: c for c in ordered}
        for key, bucket in snapshot.buckets.items():
            if bucket is None:
                self._requests.pop(key, None)
            else:
                self._requests[key] = list(bucket)
        if self.selected_id is None and snapshot.selected_id in self._nodes:
            self.selected_id = snapshot.selected_id
        self._reindex()
