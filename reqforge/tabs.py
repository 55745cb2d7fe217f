import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Union

from .errors import InFlightError
from .models import ROOT_ID, HttpRequest, HttpResponse, Tab


def gen_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class TabSnapshot:
    tabs: List[Tab]
    active_tab_id: Optional[str]


class TabManager:
    """Open tabs, the active-tab pointer and per-tab draft state.

    Tabs live only on the client. A tab with no backend ``request.id`` is
    always unsaved; one opened from a persisted request starts saved.
    """

    def __init__(self, id_factory: Callable[[], str] = gen_id):
        self._id_factory = id_factory
        self._tabs: List[Tab] = []
        self._active_tab_id: Optional[str] = None
        self._sending: Set[str] = set()
        self._saving: Set[str] = set()

    # --- Queries ---
    @property
    def tabs(self) -> List[Tab]:
        return list(self._tabs)

    @property
    def active_tab_id(self) -> Optional[str]:
        return self._active_tab_id

    @property
    def active_tab(self) -> Optional[Tab]:
        return self.get(self._active_tab_id)

    def __len__(self) -> int:
        return len(self._tabs)

    def get(self, tab_id: Optional[str]) -> Optional[Tab]:
        return next((t for t in self._tabs if t.id == tab_id), None)

    def index_of(self, tab_id: str) -> int:
        return next((i for i, t in enumerate(self._tabs) if t.id == tab_id), -1)

    def find_by_request_id(self, request_id: Optional[str]) -> Optional[Tab]:
        if not request_id:
            return None
        return next((t for t in self._tabs if t.request.id == request_id), None)

    # --- Mutations ---
    def add_tab(
        self,
        request_seed: Union[HttpRequest, Dict[str, Any], None] = None,
        collection_id: Optional[str] = None,
    ) -> Tab:
        if isinstance(request_seed, HttpRequest):
            seed = request_seed.model_dump()
        else:
            seed = dict(request_seed or {})
        if collection_id and collection_id != ROOT_ID:
            seed["collection_id"] = collection_id
        request = HttpRequest.model_validate(seed)
        tab = Tab(
            id=self._id_factory(),
            name=request.name,
            request=request,
            saved=bool(request.id),
        )
        self._tabs = self._tabs + [tab]
        self._active_tab_id = tab.id
        return tab

    def set_active_tab(self, tab_id: Optional[str]) -> bool:
        if tab_id is not None and self.get(tab_id) is None:
            return False
        self._active_tab_id = tab_id
        return True

    def close_tab(self, tab_id: str) -> Optional[Tab]:
        closed = self.close_tabs(lambda t: t.id == tab_id)
        return closed[0] if closed else None

    def close_tabs(self, predicate: Callable[[Tab], bool]) -> List[Tab]:
        """Close every matching tab.

        When the active tab is among them, the survivor at the active tab's
        old position (clamped to the new length) becomes active, or None.
        """
        closed = [t for t in self._tabs if predicate(t)]
        if not closed:
            return []
        closed_ids = {t.id for t in closed}
        old_index = self.index_of(self._active_tab_id) if self._active_tab_id else -1
        remaining = [t for t in self._tabs if t.id not in closed_ids]
        if self._active_tab_id in closed_ids:
            if remaining:
                survivors_before = sum(1 for t in self._tabs[:old_index] if t.id not in closed_ids)
                self._active_tab_id = remaining[min(survivors_before, len(remaining) - 1)].id
            else:
                self._active_tab_id = None
        self._tabs = remaining
        return closed

    def _replace(self, tab_id: str, **updates: Any) -> Optional[Tab]:
        tab = self.get(tab_id)
        if tab is None:
            return None
        updated = tab.model_copy(update=updates)
        self._tabs = [updated if t.id == tab_id else t for t in self._tabs]
        return updated

    def update_tab(self, tab_id: str, **updates: Any) -> Optional[Tab]:
        return self._replace(tab_id, **updates)

    def update_tab_request(self, tab_id: str, patch: Dict[str, Any]) -> Optional[Tab]:
        """Merge a patch into the draft. Always marks the tab unsaved."""
        tab = self.get(tab_id)
        if tab is None:
            return None
        draft = HttpRequest.model_validate({**tab.request.model_dump(), **patch})
        name = patch["name"] if "name" in patch else tab.name
        return self._replace(tab_id, request=draft, name=name, saved=False)

    def load_request(self, request: HttpRequest) -> Tab:
        """Switch to the tab already showing this request, or open a new one."""
        existing = self.find_by_request_id(request.id)
        if existing is not None:
            self._active_tab_id = existing.id
            return existing
        return self.add_tab(request)

    def patch_request(self, request_id: str, **fields: Any) -> List[Tab]:
        """Apply the same field changes to every tab showing a persisted request.

        Tab names follow a ``name`` change. The saved flag is left untouched.
        """
        touched = []
        tabs = []
        for tab in self._tabs:
            if tab.request.id == request_id:
                updates: Dict[str, Any] = {"request": tab.request.model_copy(update=fields)}
                if "name" in fields:
                    updates["name"] = fields["name"]
                tab = tab.model_copy(update=updates)
                touched.append(tab)
            tabs.append(tab)
        self._tabs = tabs
        return touched

    def mark_saved(self, tab_id: str, request: HttpRequest, name: str) -> Optional[Tab]:
        return self._replace(tab_id, request=request, name=name, saved=True)

    # --- In-flight guards ---
    def begin_send(self, tab_id: str) -> Optional[Tab]:
        tab = self.get(tab_id)
        if tab is None:
            return None
        if tab.loading or tab_id in self._sending:
            raise InFlightError(
                f"Tab {tab_id} already has a request in flight",
                operation="send_request",
                context={"tab_id": tab_id},
            )
        self._sending.add(tab_id)
        return self._replace(tab_id, loading=True)

    def end_send(self, tab_id: str, response: Optional[HttpResponse] = None) -> Optional[Tab]:
        self._sending.discard(tab_id)
        if response is None:
            return self._replace(tab_id, loading=False)
        return self._replace(tab_id, loading=False, response=response)

    def begin_save(self, tab_id: str):
        if tab_id in self._saving:
            raise InFlightError(
                f"Tab {tab_id} is already being saved",
                operation="save_request",
                context={"tab_id": tab_id},
            )
        self._saving.add(tab_id)

    def end_save(self, tab_id: str):
        self._saving.discard(tab_id)

    # --- Snapshots ---
    def snapshot(self) -> TabSnapshot:
        return TabSnapshot(tabs=list(self._tabs), active_tab_id=self._active_tab_id)

    def reopen(self, snapshot: TabSnapshot, closed: List[Tab]):
        """Undo a close_tabs call using the snapshot taken just before it.

        Closed tabs go back at their old relative positions; tabs opened
        since then are kept.
        """
        present = {t.id for t in self._tabs}
        order = {t.id: i for i, t in enumerate(snapshot.tabs)}
        tabs = list(self._tabs)
        for tab in closed:
            if tab.id in present or tab.id not in order:
                continue
            # loading mirrors the send guard, not the snapshot
            tab = tab.model_copy(update={"loading": tab.id in self._sending})
            at = next(
                (i for i, t in enumerate(tabs) if order.get(t.id, len(order)) > order[tab.id]),
                len(tabs),
            )
            tabs.insert(at, tab)
        self._tabs = tabs
        if snapshot.active_tab_id in {t.id for t in closed}:
            self._active_tab_id = snapshot.active_tab_id
