from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from loguru import logger
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .backend import Backend
from .errors import BackendError, MalformedIdError, WorkspaceError
from .models import (
    ROOT_ID,
    AuthConfig,
    Collection,
    CollectionExport,
    Environment,
    HttpRequest,
    HttpResponse,
    RequestHistory,
    SendRequestPayload,
    Tab,
    is_valid_id,
    parent_or_none,
    utcnow,
)
from .tabs import TabManager
from .tree import TreeIndex

_adapters: Dict[Any, TypeAdapter] = {}


def _adapter(tp: Any) -> TypeAdapter:
    if tp not in _adapters:
        _adapters[tp] = TypeAdapter(tp)
    return _adapters[tp]


@dataclass
class CascadeResult:
    removed_ids: Set[str] = field(default_factory=set)
    closed_tabs: List[Tab] = field(default_factory=list)


class SyncCoordinator:
    """The one seam between the workspace and the backend.

    Every call goes through ``call``, which validates results and turns any
    backend failure into a BackendError after logging it once. Actions that
    touch cached state apply their local change first and put the captured
    slice back if the backend rejects it.
    """

    def __init__(
        self,
        backend: Backend,
        tree: TreeIndex,
        tabs: TabManager,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.backend = backend
        self.tree = tree
        self.tabs = tabs
        self._on_change = on_change or (lambda: None)

    def changed(self):
        self._on_change()

    async def call(self, operation: str, pending: Awaitable[Any], result_type: Any = None) -> Any:
        log = logger.bind(operation=operation)
        try:
            result = await pending
        except WorkspaceError as e:
            log.bind(status="error").error(f"{operation} failed: {e.message}")
            raise
        except Exception as e:
            log.bind(status="error").error(f"{operation} failed: {e}")
            raise BackendError(f"{operation} failed: {e}", operation=operation) from e
        if result_type is None:
            return result
        try:
            return _adapter(result_type).validate_python(result)
        except PydanticValidationError as e:
            log.bind(status="error").error(f"{operation} returned malformed data: {e.error_count()} errors")
            raise BackendError(f"{operation} returned malformed data", operation=operation) from e

    async def commit(self, operation: str, pending: Awaitable[Any], rollback: Callable[[], None]) -> Any:
        """Publish an optimistic change, then await the backend and undo on failure."""
        self.changed()
        try:
            return await self.call(operation, pending)
        except WorkspaceError:
            rollback()
            self.changed()
            logger.bind(operation=operation, status="rolled_back").warning(f"{operation} reverted")
            raise

    # --- Collections ---
    async def load_collections(self) -> List[Collection]:
        collections = await self.call("list_collections", self.backend.list_collections(), List[Collection])
        self.tree.replace_collections(collections)
        self.changed()
        return collections

    async def create_collection(
        self, name: str, description: Optional[str] = None, parent_id: Optional[str] = None
    ) -> Collection:
        if parent_id is not None and not is_valid_id(parent_id):
            raise MalformedIdError(f"Invalid parent id: {parent_id!r}", operation="create_collection")
        collection = await self.call(
            "create_collection",
            self.backend.create_collection(name, description, parent_or_none(parent_id)),
            Collection,
        )
        self.tree.upsert_collection(collection)
        self.changed()
        return collection

    async def rename_collection(self, collection_id: str, name: str) -> Optional[Collection]:
        current = self.tree.get(collection_id)
        if current is None:
            return None
        snap = self.tree.snapshot(collection_ids=[collection_id])
        renamed = current.model_copy(update={"name": name, "updated_at": utcnow()})
        self.tree.upsert_collection(renamed)
        await self.commit(
            "rename_collection",
            self.backend.rename_collection(collection_id, name),
            lambda: self.tree.restore(snap),
        )
        return renamed

    async def set_collection_auth(self, collection_id: str, auth: Optional[AuthConfig]) -> Optional[Collection]:
        current = self.tree.get(collection_id)
        if current is None:
            return None
        snap = self.tree.snapshot(collection_ids=[collection_id])
        updated = current.model_copy(update={"auth": auth, "updated_at": utcnow()})
        self.tree.upsert_collection(updated)
        await self.commit(
            "set_collection_auth",
            self.backend.set_collection_auth(collection_id, auth),
            lambda: self.tree.restore(snap),
        )
        return updated

    async def delete_collection(self, collection_id: str) -> Optional[CascadeResult]:
        """Remove a collection subtree with everything hanging off it.

        Collections, request buckets, open tabs, the active tab and the
        selection are all derived from one descendant set and change together.
        """
        if collection_id not in self.tree:
            return None
        doomed = self.tree.descendant_ids(collection_id)
        tree_snap = self.tree.snapshot(collection_ids=doomed, bucket_keys=doomed)
        tab_snap = self.tabs.snapshot()
        self.tree.remove_collections(doomed)
        closed = self.tabs.close_tabs(lambda t: t.request.collection_id in doomed)

        def rollback():
            self.tree.restore(tree_snap)
            self.tabs.reopen(tab_snap, closed)

        await self.commit("delete_collection", self.backend.delete_collection(collection_id), rollback)
        logger.bind(operation="delete_collection", status="ok").info(
            f"Deleted {len(doomed)} collections, closed {len(closed)} tabs"
        )
        return CascadeResult(removed_ids=doomed, closed_tabs=closed)

    async def import_collection_bundle(self, json_data: str) -> Collection:
        root = await self.call(
            "import_collection_bundle", self.backend.import_collection_bundle(json_data), Collection
        )
        await self._load_imported(root, "import_collection_bundle")
        return root

    async def export_collection(self, collection_id: str) -> Optional[CollectionExport]:
        if not is_valid_id(collection_id) or collection_id == ROOT_ID:
            raise MalformedIdError(f"Invalid collection id: {collection_id!r}", operation="export_collection")
        if collection_id not in self.tree:
            return None
        return await self.call(
            "export_collection", self.backend.export_collection(collection_id), CollectionExport
        )

    async def import_collection(self, data: Dict[str, Any]) -> Collection:
        root = await self.call("import_collection", self.backend.import_collection(data), Collection)
        await self._load_imported(root, "import_collection")
        return root

    async def _load_imported(self, root: Collection, operation: str):
        """Reload the tree, then fetch requests for every collection under the imported root."""
        await self.load_collections()
        subtree = self.tree.descendant_ids(root.id)
        for collection in self.tree.collections:
            if collection.id not in subtree:
                continue
            try:
                await self.load_collection_requests(collection.id)
            except BackendError:
                logger.bind(operation=operation).warning(f"Imported collection {collection.id} requests not loaded")

    # --- Requests ---
    async def load_collection_requests(self, collection_id: Optional[str]) -> List[HttpRequest]:
        collection_id = parent_or_none(collection_id)

        def live() -> bool:
            return collection_id is None or collection_id in self.tree

        if not live():
            return []
        self.tree.set_loading(collection_id, True)
        self.changed()
        try:
            requests = await self.call(
                "list_requests", self.backend.list_requests(collection_id), List[HttpRequest]
            )
            if live():
                self.tree.set_requests_for_collection(collection_id, requests)
            return requests
        finally:
            if live():
                self.tree.set_loading(collection_id, False)
            self.changed()

    async def list_requests(self, collection_id: Optional[str]) -> List[HttpRequest]:
        return await self.call(
            "list_requests", self.backend.list_requests(parent_or_none(collection_id)), List[HttpRequest]
        )

    async def save_request(
        self, tab_id: str, name: str, collection_id: Optional[str] = None
    ) -> Optional[HttpRequest]:
        tab = self.tabs.get(tab_id)
        if tab is None:
            return None
        if collection_id is not None and not is_valid_id(collection_id):
            raise MalformedIdError(f"Invalid collection id: {collection_id!r}", operation="save_request")
        target = parent_or_none(collection_id if collection_id is not None else tab.request.collection_id)
        draft = tab.request.model_copy(update={"name": name, "collection_id": target})
        self.tabs.begin_save(tab_id)
        try:
            saved = await self.call("save_request", self.backend.save_request(draft), HttpRequest)
        finally:
            self.tabs.end_save(tab_id)
        saved = saved.model_copy(update={"collection_id": target})
        current = self.tabs.get(tab_id)
        if current is not None:
            if current.request == tab.request:
                self.tabs.mark_saved(tab_id, saved, name)
            else:
                # edited while saving: keep the newer draft, adopt the backend id
                self.tabs.update_tab(
                    tab_id,
                    request=current.request.model_copy(update={"id": saved.id, "created_at": saved.created_at}),
                    saved=False,
                )
        self.tree.replace_request_in_caches(saved)
        self.changed()
        return saved

    def _buckets_holding(self, request_id: str) -> List[str]:
        return [k for k, bucket in self.tree.request_cache.items() if any(r.id == request_id for r in bucket)]

    async def rename_request(self, request_id: str, name: str) -> int:
        """Rename everywhere the request is shown; returns how many tabs changed."""
        snap = self.tree.snapshot(bucket_keys=self._buckets_holding(request_id))
        before = {t.id: (t.name, t.request.name) for t in self.tabs.tabs if t.request.id == request_id}
        self.tree.rename_request_in_caches(request_id, name)
        touched = self.tabs.patch_request(request_id, name=name)

        def rollback():
            self.tree.restore(snap)
            for tab_id, (tab_name, request_name) in before.items():
                current = self.tabs.get(tab_id)
                if current is not None and current.request.id == request_id:
                    self.tabs.update_tab(
                        tab_id,
                        name=tab_name,
                        request=current.request.model_copy(update={"name": request_name}),
                    )

        await self.commit("rename_request", self.backend.rename_request(request_id, name), rollback)
        return len(touched)

    async def delete_request(self, request_id: str) -> List[Tab]:
        snap = self.tree.snapshot(bucket_keys=self._buckets_holding(request_id))
        tab_snap = self.tabs.snapshot()
        self.tree.remove_request_from_caches(request_id)
        closed = self.tabs.close_tabs(lambda t: t.request.id == request_id)

        def rollback():
            self.tree.restore(snap)
            self.tabs.reopen(tab_snap, closed)

        await self.commit("delete_request", self.backend.delete_request(request_id), rollback)
        return closed

    # --- Environments ---
    async def list_environments(self) -> List[Environment]:
        return await self.call("list_environments", self.backend.list_environments(), List[Environment])

    async def get_active_environment(self) -> Optional[Environment]:
        return await self.call(
            "get_active_environment", self.backend.get_active_environment(), Optional[Environment]
        )

    async def create_environment(self, name: str, variables: Dict[str, str]) -> Environment:
        return await self.call(
            "create_environment", self.backend.create_environment(name, variables), Environment
        )

    async def update_environment(self, environment_id: str, name: str, variables: Dict[str, str]) -> Environment:
        return await self.call(
            "update_environment", self.backend.update_environment(environment_id, name, variables), Environment
        )

    async def delete_environment(self, environment_id: str) -> None:
        await self.call("delete_environment", self.backend.delete_environment(environment_id))

    async def set_active_environment(self, environment_id: Optional[str]) -> None:
        await self.call("set_active_environment", self.backend.set_active_environment(environment_id))

    # --- Execution, history, formatting ---
    async def send_request(self, payload: SendRequestPayload) -> HttpResponse:
        return await self.call("send_request", self.backend.send_request(payload), HttpResponse)

    async def list_history(self, limit: Optional[int] = None) -> List[RequestHistory]:
        return await self.call("list_history", self.backend.list_history(limit), List[RequestHistory])

    async def clear_history(self) -> None:
        await self.call("clear_history", self.backend.clear_history())

    async def format_text(self, content: str) -> str:
        return await self.call("format_text", self.backend.format_text(content), str)
