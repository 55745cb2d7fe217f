import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from loguru import logger

from .auth import resolve_request_headers
from .backend import Backend
from .config import Settings
from .errors import WorkspaceError, WorkspaceValidationError
from .models import (
    AuthConfig,
    Collection,
    CollectionExport,
    Environment,
    HttpRequest,
    HttpResponse,
    Notification,
    RequestHistory,
    SendRequestPayload,
    Tab,
    WorkspaceSnapshot,
)
from .moves import DragEndEvent, MoveCoordinator, MoveIntent
from .sync import CascadeResult, SyncCoordinator
from .tabs import TabManager, gen_id
from .tree import TreeIndex
from .variables import request_placeholders

Listener = Callable[[WorkspaceSnapshot], None]
Notifier = Callable[[Notification], None]

MAX_NOTIFICATIONS = 100


class WorkspaceStore:
    """The workspace state container and its action surface.

    Each store owns its own tree, tabs and backend client, so several can
    live side by side. Actions either return a result, return None/False for
    ids that no longer exist locally, or raise a WorkspaceError after
    recording an error notification.
    """

    def __init__(
        self,
        backend: Backend,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        id_factory: Callable[[], str] = gen_id,
    ):
        self.settings = settings or Settings()
        self.tree = TreeIndex()
        self.tabs = TabManager(id_factory=id_factory)
        self.sync = SyncCoordinator(backend, self.tree, self.tabs, on_change=self._emit)
        self.moves = MoveCoordinator(self.sync)

        self.environments: List[Environment] = []
        self.active_environment: Optional[Environment] = None
        self.history: List[RequestHistory] = []
        self.collections_loading = False
        self.environments_loading = False
        self.history_loading = False
        self.sidebar_collapsed = False

        self.notifications: List[Notification] = []
        self._notifier = notifier
        self._listeners: List[Listener] = []

    # --- Observation ---
    def snapshot(self) -> WorkspaceSnapshot:
        return WorkspaceSnapshot(
            tabs=self.tabs.tabs,
            active_tab_id=self.tabs.active_tab_id,
            collections=self.tree.collections,
            collection_requests=self.tree.request_cache,
            collection_requests_loading=self.tree.loading_flags,
            selected_collection_id=self.tree.selected_id,
            sidebar_collapsed=self.sidebar_collapsed,
            environments=list(self.environments),
            active_environment=self.active_environment,
            history=list(self.history),
            collections_loading=self.collections_loading,
            environments_loading=self.environments_loading,
            history_loading=self.history_loading,
            active_drag_id=self.moves.active_drag_id,
            drag_over_target=self.moves.drag_over_target,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener with a fresh snapshot after every state change."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self):
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            listener(snap)

    def _notify(self, level: str, message: str, operation: Optional[str] = None):
        note = Notification(level=level, message=message, operation=operation)
        self.notifications = (self.notifications + [note])[-MAX_NOTIFICATIONS:]
        if self._notifier is not None:
            self._notifier(note)

    async def _run(
        self,
        operation: str,
        pending: Awaitable[Any],
        success: Union[str, Callable[[Any], str], None] = None,
    ) -> Any:
        try:
            result = await pending
        except WorkspaceError as e:
            self._notify("error", e.message, operation)
            raise
        if success is not None and result is not None and result is not False:
            self._notify("success", success(result) if callable(success) else success, operation)
        return result

    # --- Startup ---
    async def initialize(self) -> WorkspaceSnapshot:
        """Load collections, environments and recent history, then make sure a tab is open.

        Load failures are logged and recorded but do not stop startup.
        """
        log = logger.bind(operation="initialize")
        for load in (self.load_collections, self.load_environments, self.load_history):
            try:
                await load()
            except WorkspaceError as e:
                log.warning(f"Initial load incomplete: {e.message}")
        if len(self.tabs) == 0:
            self.add_tab()
        return self.snapshot()

    # --- Tabs ---
    def add_tab(
        self,
        request_seed: Union[HttpRequest, Dict[str, Any], None] = None,
        collection_id: Optional[str] = None,
    ) -> Tab:
        tab = self.tabs.add_tab(request_seed, collection_id)
        self._emit()
        return tab

    def close_tab(self, tab_id: str) -> Optional[Tab]:
        closed = self.tabs.close_tab(tab_id)
        if closed is not None:
            self._emit()
        return closed

    def set_active_tab(self, tab_id: Optional[str]) -> bool:
        changed = self.tabs.set_active_tab(tab_id)
        if changed:
            self._emit()
        return changed

    def update_tab(self, tab_id: str, **updates: Any) -> Optional[Tab]:
        tab = self.tabs.update_tab(tab_id, **updates)
        if tab is not None:
            self._emit()
        return tab

    def update_tab_request(self, tab_id: str, patch: Dict[str, Any]) -> Optional[Tab]:
        tab = self.tabs.update_tab_request(tab_id, patch)
        if tab is not None:
            self._emit()
        return tab

    def load_request(self, request: HttpRequest) -> Tab:
        tab = self.tabs.load_request(request)
        self._emit()
        return tab

    def resolved_headers(self, tab_id: str) -> Optional[Dict[str, str]]:
        """Headers the tab's request would be sent with, collection auth included."""
        tab = self.tabs.get(tab_id)
        if tab is None:
            return None
        return resolve_request_headers(tab.request, self.tree.lookup)

    def request_placeholders(self, tab_id: str) -> Optional[Dict[str, List[str]]]:
        tab = self.tabs.get(tab_id)
        if tab is None:
            return None
        found = request_placeholders(tab.request)
        known = self.active_environment.variables if self.active_environment else {}
        found["missing"] = [name for name in found["variables"] if name not in known]
        return found

    # --- Collections ---
    async def load_collections(self) -> List[Collection]:
        self.collections_loading = True
        self._emit()
        try:
            return await self._run("load_collections", self.sync.load_collections())
        finally:
            self.collections_loading = False
            self._emit()

    async def create_collection(
        self, name: str, description: Optional[str] = None, parent_id: Optional[str] = None
    ) -> Collection:
        return await self._run(
            "create_collection",
            self.sync.create_collection(name, description, parent_id),
            lambda c: f'Collection "{c.name}" created',
        )

    async def rename_collection(self, collection_id: str, name: str) -> Optional[Collection]:
        return await self._run(
            "rename_collection", self.sync.rename_collection(collection_id, name), "Collection renamed"
        )

    async def move_collection(self, collection_id: str, new_parent_id: Optional[str]) -> bool:
        return await self._run(
            "move_collection", self.moves.move_collection(collection_id, new_parent_id), "Collection moved"
        )

    async def delete_collection(self, collection_id: str) -> Optional[CascadeResult]:
        return await self._run(
            "delete_collection", self.sync.delete_collection(collection_id), "Collection deleted"
        )

    async def update_collection_auth(
        self, collection_id: str, auth: Union[AuthConfig, Dict[str, Any], None]
    ) -> Optional[Collection]:
        if isinstance(auth, dict):
            auth = AuthConfig.model_validate(auth)
        return await self._run(
            "update_collection_auth",
            self.sync.set_collection_auth(collection_id, auth),
            "Collection authentication updated",
        )

    async def import_collection_bundle(self, json_data: str) -> Collection:
        return await self._run(
            "import_collection_bundle",
            self.sync.import_collection_bundle(json_data),
            lambda c: f'Collection "{c.name}" imported',
        )

    async def export_collection(self, collection_id: str) -> Optional[CollectionExport]:
        return await self._run(
            "export_collection",
            self.sync.export_collection(collection_id),
            lambda e: f'Collection "{e.collection.name}" exported',
        )

    async def import_collection(self, data: Union[str, Dict[str, Any]]) -> Collection:
        """Re-import a native export as a new top-level collection."""
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError as e:
                err = WorkspaceValidationError(f"Invalid JSON: {e}", operation="import_collection")
                self._notify("error", err.message, "import_collection")
                raise err from e
        return await self._run(
            "import_collection",
            self.sync.import_collection(data),
            lambda c: f'Collection "{c.name}" imported',
        )

    def set_selected_collection(self, collection_id: Optional[str]) -> bool:
        changed = self.tree.select(collection_id)
        if changed:
            self._emit()
        return changed

    # --- Requests ---
    async def load_collection_requests(self, collection_id: Optional[str]) -> List[HttpRequest]:
        return await self._run("load_collection_requests", self.sync.load_collection_requests(collection_id))

    async def load_requests_from_collection(self, collection_id: Optional[str]) -> List[HttpRequest]:
        """Fetch a collection's requests without caching them; [] on failure."""
        try:
            return await self.sync.list_requests(collection_id)
        except WorkspaceError:
            return []

    def get_collection_requests(self, collection_id: Optional[str]) -> List[HttpRequest]:
        return self.tree.requests_for(collection_id) or []

    async def save_request(
        self, tab_id: str, name: str, collection_id: Optional[str] = None
    ) -> Optional[HttpRequest]:
        return await self._run(
            "save_request",
            self.sync.save_request(tab_id, name, collection_id),
            lambda r: f'Request "{r.name}" saved',
        )

    async def send_request(self, tab_id: str) -> Optional[HttpResponse]:
        tab = self.tabs.get(tab_id)
        if tab is None:
            return None
        try:
            self.tabs.begin_send(tab_id)
        except WorkspaceError as e:
            self._notify("error", e.message, "send_request")
            raise
        self._emit()
        payload = SendRequestPayload(
            method=tab.request.method,
            url=tab.request.url,
            headers=resolve_request_headers(tab.request, self.tree.lookup),
            body=tab.request.body,
            path_params=tab.request.path_params,
            timeout=self.settings.send_timeout,
        )
        try:
            response = await self._run("send_request", self.sync.send_request(payload))
        except WorkspaceError:
            self.tabs.end_send(tab_id)
            self._emit()
            raise
        self.tabs.end_send(tab_id, response)
        self._emit()
        logger.bind(operation="send_request", status="ok").info(
            f"{payload.method} {payload.url} -> {response.status} in {response.response_time}ms"
        )
        return response

    async def delete_request(self, request_id: str) -> List[Tab]:
        return await self._run("delete_request", self.sync.delete_request(request_id), "Request deleted")

    async def move_request(self, request_id: str, new_collection_id: Optional[str]) -> bool:
        return await self._run(
            "move_request", self.moves.move_request(request_id, new_collection_id), "Request moved"
        )

    async def rename_request(self, request_id: str, name: str) -> int:
        return await self._run("rename_request", self.sync.rename_request(request_id, name), "Request renamed")

    # --- Drag and drop ---
    def drag_start(self, item_id: str):
        self.moves.drag_start(item_id)

    def drag_over(self, target_id: Optional[str]):
        self.moves.drag_over(target_id)

    async def drag_end(self, event: Union[DragEndEvent, Dict[str, Any]]) -> Optional[MoveIntent]:
        if isinstance(event, dict):
            event = DragEndEvent.model_validate(event)
        return await self._run(
            "drag_end",
            self.moves.drag_end(event),
            lambda i: f"{i.kind.capitalize()} moved",
        )

    # --- Environments ---
    async def load_environments(self) -> List[Environment]:
        self.environments_loading = True
        self._emit()
        try:
            environments = await self._run("load_environments", self.sync.list_environments())
            active = await self._run("load_environments", self.sync.get_active_environment())
            self.environments = environments
            self.active_environment = active
            return environments
        finally:
            self.environments_loading = False
            self._emit()

    async def create_environment(self, name: str, variables: Dict[str, str]) -> Environment:
        environment = await self._run(
            "create_environment",
            self.sync.create_environment(name, variables),
            lambda e: f'Environment "{e.name}" created',
        )
        self.environments = [environment] + self.environments
        self._emit()
        return environment

    async def update_environment(self, environment_id: str, name: str, variables: Dict[str, str]) -> Environment:
        environment = await self._run(
            "update_environment", self.sync.update_environment(environment_id, name, variables), "Environment updated"
        )
        self.environments = [environment if e.id == environment_id else e for e in self.environments]
        if self.active_environment is not None and self.active_environment.id == environment_id:
            self.active_environment = environment
        self._emit()
        return environment

    async def delete_environment(self, environment_id: str) -> bool:
        await self._run("delete_environment", self.sync.delete_environment(environment_id))
        self.environments = [e for e in self.environments if e.id != environment_id]
        if self.active_environment is not None and self.active_environment.id == environment_id:
            self.active_environment = None
        self._notify("success", "Environment deleted", "delete_environment")
        self._emit()
        return True

    async def set_active_environment(self, environment_id: Optional[str]) -> bool:
        if environment_id is not None and not any(e.id == environment_id for e in self.environments):
            return False
        await self._run("set_active_environment", self.sync.set_active_environment(environment_id))
        self.environments = [
            e.model_copy(update={"is_active": e.id == environment_id}) for e in self.environments
        ]
        self.active_environment = next((e for e in self.environments if e.id == environment_id), None)
        self._emit()
        return True

    # --- History ---
    async def load_history(self, limit: Optional[int] = None) -> List[RequestHistory]:
        self.history_loading = True
        self._emit()
        try:
            history = await self._run(
                "load_history", self.sync.list_history(limit or self.settings.history_limit)
            )
            self.history = history
            return history
        finally:
            self.history_loading = False
            self._emit()

    async def clear_history(self) -> bool:
        await self._run("clear_history", self.sync.clear_history())
        self.history = []
        self._notify("success", "History cleared", "clear_history")
        self._emit()
        return True

    # --- Utilities ---
    def set_sidebar_collapsed(self, collapsed: bool):
        self.sidebar_collapsed = collapsed
        self._emit()

    async def format_json(self, content: str) -> str:
        return await self._run("format_json", self.sync.format_text(content))
