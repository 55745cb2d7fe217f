import asyncio
import itertools
import uuid
from typing import Any, Dict, List, Optional, Tuple

import pytest

from reqforge.config import Settings
from reqforge.exchange import export_collection, parse_collection_export
from reqforge.models import (
    AuthConfig,
    BearerAuth,
    Collection,
    Environment,
    HttpRequest,
    HttpResponse,
    RequestHistory,
    SendRequestPayload,
    utcnow,
)
from reqforge.postman import parse_postman_collection
from reqforge.store import WorkspaceStore


def new_id() -> str:
    return str(uuid.uuid4())


class FakeBackend:
    """In-memory backend with failure injection and per-operation gates.

    ``fail[op] = exc`` makes the next calls of ``op`` raise; ``gates[op]``
    holds a call until the event is set, so tests can interleave actions.
    """

    def __init__(self):
        self.collections: List[Collection] = []
        self.requests: List[HttpRequest] = []
        self.environments: List[Environment] = []
        self.history: List[RequestHistory] = []
        self.calls: List[Tuple[str, tuple]] = []
        self.fail: Dict[str, Exception] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.sent: List[SendRequestPayload] = []
        self.response = HttpResponse(status=200, status_text="OK", body='{"ok": true}')

    # --- seeding helpers ---
    def add_collection(self, name: str, parent: Optional[Collection] = None, auth: Optional[AuthConfig] = None):
        col = Collection(id=new_id(), name=name, parent_id=parent.id if parent else None, auth=auth)
        self.collections.append(col)
        return col

    def add_request(self, name: str, collection: Optional[Collection] = None, **fields: Any) -> HttpRequest:
        req = HttpRequest(
            id=new_id(),
            name=name,
            collection_id=collection.id if collection else None,
            created_at=utcnow(),
            updated_at=utcnow(),
            **fields,
        )
        self.requests.append(req)
        return req

    def called(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    async def _enter(self, op: str, *args: Any):
        self.calls.append((op, args))
        gate = self.gates.get(op)
        if gate is not None:
            await gate.wait()
        if op in self.fail:
            raise self.fail[op]

    def _subtree(self, collection_id: str) -> set:
        ids = {collection_id}
        changed = True
        while changed:
            changed = False
            for c in self.collections:
                if c.parent_id in ids and c.id not in ids:
                    ids.add(c.id)
                    changed = True
        return ids

    # --- Collections ---
    async def list_collections(self):
        await self._enter("list_collections")
        return list(self.collections)

    async def create_collection(self, name, description=None, parent_id=None):
        await self._enter("create_collection", name, description, parent_id)
        col = Collection(id=new_id(), name=name, description=description, parent_id=parent_id)
        self.collections.insert(0, col)
        return col

    async def rename_collection(self, collection_id, name):
        await self._enter("rename_collection", collection_id, name)
        self.collections = [c.model_copy(update={"name": name}) if c.id == collection_id else c for c in self.collections]

    async def move_collection(self, collection_id, new_parent_id):
        await self._enter("move_collection", collection_id, new_parent_id)
        self.collections = [
            c.model_copy(update={"parent_id": new_parent_id}) if c.id == collection_id else c for c in self.collections
        ]

    async def delete_collection(self, collection_id):
        await self._enter("delete_collection", collection_id)
        doomed = self._subtree(collection_id)
        self.collections = [c for c in self.collections if c.id not in doomed]
        self.requests = [r for r in self.requests if r.collection_id not in doomed]

    async def set_collection_auth(self, collection_id, auth):
        await self._enter("set_collection_auth", collection_id, auth)
        self.collections = [c.model_copy(update={"auth": auth}) if c.id == collection_id else c for c in self.collections]

    async def import_collection_bundle(self, json_data):
        await self._enter("import_collection_bundle")
        bundle = parse_postman_collection(json_data)
        self.collections = bundle.collections + self.collections
        self.requests = self.requests + bundle.requests
        return bundle.root

    async def export_collection(self, collection_id):
        await self._enter("export_collection", collection_id)
        col = next(c for c in self.collections if c.id == collection_id)
        return export_collection(col, self.requests)

    async def import_collection(self, data):
        await self._enter("import_collection", data)
        bundle = parse_collection_export(data)
        self.collections = bundle.collections + self.collections
        self.requests = self.requests + bundle.requests
        return bundle.root

    # --- Requests ---
    async def list_requests(self, collection_id):
        await self._enter("list_requests", collection_id)
        return [r for r in self.requests if r.collection_id == collection_id]

    async def save_request(self, request):
        await self._enter("save_request", request)
        saved = request.model_copy(update={"id": request.id or new_id(), "updated_at": utcnow()})
        self.requests = [r for r in self.requests if r.id != saved.id] + [saved]
        return saved

    async def move_request(self, request_id, new_collection_id):
        await self._enter("move_request", request_id, new_collection_id)
        self.requests = [
            r.model_copy(update={"collection_id": new_collection_id}) if r.id == request_id else r for r in self.requests
        ]

    async def rename_request(self, request_id, name):
        await self._enter("rename_request", request_id, name)
        self.requests = [r.model_copy(update={"name": name}) if r.id == request_id else r for r in self.requests]

    async def delete_request(self, request_id):
        await self._enter("delete_request", request_id)
        self.requests = [r for r in self.requests if r.id != request_id]

    # --- Environments ---
    async def list_environments(self):
        await self._enter("list_environments")
        return list(self.environments)

    async def get_active_environment(self):
        await self._enter("get_active_environment")
        return next((e for e in self.environments if e.is_active), None)

    async def create_environment(self, name, variables):
        await self._enter("create_environment", name, variables)
        env = Environment(id=new_id(), name=name, variables=variables)
        self.environments.insert(0, env)
        return env

    async def update_environment(self, environment_id, name, variables):
        await self._enter("update_environment", environment_id, name, variables)
        env = next(e for e in self.environments if e.id == environment_id)
        env = env.model_copy(update={"name": name, "variables": variables})
        self.environments = [env if e.id == environment_id else e for e in self.environments]
        return env

    async def delete_environment(self, environment_id):
        await self._enter("delete_environment", environment_id)
        self.environments = [e for e in self.environments if e.id != environment_id]

    async def set_active_environment(self, environment_id):
        await self._enter("set_active_environment", environment_id)
        self.environments = [e.model_copy(update={"is_active": e.id == environment_id}) for e in self.environments]

    # --- Execution, history, formatting ---
    async def send_request(self, payload):
        await self._enter("send_request", payload)
        self.sent.append(payload)
        return self.response

    async def list_history(self, limit=None):
        await self._enter("list_history", limit)
        return self.history[:limit] if limit else list(self.history)

    async def clear_history(self):
        await self._enter("clear_history")
        self.history = []

    async def format_text(self, content):
        await self._enter("format_text", content)
        return content.upper()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def tab_ids():
    counter = itertools.count(1)
    return lambda: f"tab{next(counter)}"


@pytest.fixture
def store(backend, tab_ids):
    return WorkspaceStore(backend, Settings(), id_factory=tab_ids)


@pytest.fixture
def tree_data(backend):
    """A (bearer T) -> B -> C, plus an unrelated top-level D, with one request in each of B, C and D."""
    a = backend.add_collection("A", auth=AuthConfig(type="bearer", bearer=BearerAuth(token="T")))
    b = backend.add_collection("B", parent=a)
    c = backend.add_collection("C", parent=b)
    d = backend.add_collection("D")
    return {
        "A": a,
        "B": b,
        "C": c,
        "D": d,
        "rb": backend.add_request("in B", b, url="https://api.test/b"),
        "rc": backend.add_request("in C", c, url="https://api.test/c"),
        "rd": backend.add_request("in D", d, url="https://api.test/d"),
    }
