import json
import uuid
from typing import Any, Dict, List, Optional

import httpx
import redis
from loguru import logger
from pydantic import TypeAdapter

from . import exchange, http_engine
from .config import Settings
from .models import (
    AuthConfig,
    Collection,
    CollectionExport,
    Environment,
    HttpRequest,
    HttpResponse,
    RequestHistory,
    SendRequestPayload,
    utcnow,
)
from .postman import parse_postman_collection

_collections = TypeAdapter(List[Collection])
_requests = TypeAdapter(List[HttpRequest])
_environments = TypeAdapter(List[Environment])
_history = TypeAdapter(List[RequestHistory])


def connect_redis(settings: Settings) -> redis.Redis:
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        ssl=settings.redis_ssl,
        decode_responses=True,
        socket_timeout=10,
        socket_connect_timeout=10,
    )
    log = logger.bind(operation="connect_redis")
    try:
        client.ping()
        log.info(f"Connected to Redis at {settings.redis_host}:{settings.redis_port}")
    except redis.RedisError as e:
        log.warning(f"Failed to ping Redis: {e}")
    return client


class WorkspaceKeys:
    def __init__(self, namespace: str):
        self.collections = f"{namespace}:collections"
        self.requests = f"{namespace}:requests"
        self.environments = f"{namespace}:environments"
        self.history = f"{namespace}:history"

    def all(self) -> List[str]:
        return [self.collections, self.requests, self.environments, self.history]


def _dump(models) -> str:
    return json.dumps([m.model_dump(mode="json") for m in models])


class RedisBackend:
    """Reference persistence backend keeping each table as one JSON document in Redis."""

    def __init__(
        self,
        client: redis.Redis,
        namespace: str = "reqforge",
        history_max: int = 200,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.r = client
        self.keys = WorkspaceKeys(namespace)
        self.history_max = history_max
        self.http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisBackend":
        return cls(connect_redis(settings), namespace=settings.namespace, history_max=settings.history_max)

    def ensure_data(self):
        pipe = self.r.pipeline()
        for key in self.keys.all():
            if not self.r.exists(key):
                pipe.set(key, "[]")
        pipe.execute()

    def _read(self, key: str, adapter: TypeAdapter) -> List[Any]:
        raw = self.r.get(key)
        if raw is None:
            self.ensure_data()
            raw = self.r.get(key) or "[]"
        return adapter.validate_json(raw)

    def _write(self, key: str, models):
        self.r.set(key, _dump(models))

    def _collections(self) -> List[Collection]:
        return self._read(self.keys.collections, _collections)

    def _all_requests(self) -> List[HttpRequest]:
        return self._read(self.keys.requests, _requests)

    def _environments(self) -> List[Environment]:
        return self._read(self.keys.environments, _environments)

    @staticmethod
    def _find(items, item_id: str, kind: str):
        found = next((i for i in items if i.id == item_id), None)
        if found is None:
            raise LookupError(f"{kind} {item_id} not found")
        return found

    def _replace(self, key: str, items, updated):
        self._write(key, [updated if i.id == updated.id else i for i in items])

    # --- Collections ---
    async def list_collections(self) -> List[Collection]:
        return self._collections()

    async def create_collection(self, name, description=None, parent_id=None) -> Collection:
        collections = self._collections()
        if parent_id:
            self._find(collections, parent_id, "Parent collection")
        now = utcnow()
        col = Collection(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            parent_id=parent_id,
            created_at=now,
            updated_at=now,
        )
        self._write(self.keys.collections, [col] + collections)
        return col

    async def rename_collection(self, collection_id, name):
        collections = self._collections()
        col = self._find(collections, collection_id, "Collection")
        self._replace(self.keys.collections, collections, col.model_copy(update={"name": name, "updated_at": utcnow()}))

    async def move_collection(self, collection_id, new_parent_id):
        collections = self._collections()
        col = self._find(collections, collection_id, "Collection")
        if new_parent_id:
            self._find(collections, new_parent_id, "Parent collection")
            if new_parent_id in self._subtree(collections, collection_id):
                raise ValueError("Cannot move a collection into itself or its descendant")
        self._replace(
            self.keys.collections,
            collections,
            col.model_copy(update={"parent_id": new_parent_id, "updated_at": utcnow()}),
        )

    @staticmethod
    def _subtree(collections: List[Collection], collection_id: str) -> set:
        ids = {collection_id}
        stack = [collection_id]
        while stack:
            current = stack.pop()
            for c in collections:
                if c.parent_id == current and c.id not in ids:
                    ids.add(c.id)
                    stack.append(c.id)
        return ids

    async def delete_collection(self, collection_id):
        collections = self._collections()
        self._find(collections, collection_id, "Collection")
        doomed = self._subtree(collections, collection_id)
        self._write(self.keys.collections, [c for c in collections if c.id not in doomed])
        self._write(self.keys.requests, [r for r in self._all_requests() if r.collection_id not in doomed])

    async def set_collection_auth(self, collection_id, auth: Optional[AuthConfig]):
        collections = self._collections()
        col = self._find(collections, collection_id, "Collection")
        self._replace(self.keys.collections, collections, col.model_copy(update={"auth": auth, "updated_at": utcnow()}))

    async def import_collection_bundle(self, json_data: str) -> Collection:
        bundle = parse_postman_collection(json_data)
        self._write(self.keys.collections, bundle.collections + self._collections())
        self._write(self.keys.requests, self._all_requests() + bundle.requests)
        logger.bind(operation="import_collection_bundle").info(
            f"Imported {len(bundle.collections)} collections and {len(bundle.requests)} requests"
        )
        return bundle.root

    async def export_collection(self, collection_id) -> CollectionExport:
        col = self._find(self._collections(), collection_id, "Collection")
        return exchange.export_collection(col, self._all_requests())

    async def import_collection(self, data) -> Collection:
        bundle = exchange.parse_collection_export(data)
        self._write(self.keys.collections, bundle.collections + self._collections())
        self._write(self.keys.requests, self._all_requests() + bundle.requests)
        logger.bind(operation="import_collection").info(
            f"Imported collection {bundle.root.name} with {len(bundle.requests)} requests"
        )
        return bundle.root

    # --- Requests ---
    async def list_requests(self, collection_id) -> List[HttpRequest]:
        return [r for r in self._all_requests() if r.collection_id == collection_id]

    async def save_request(self, request: HttpRequest) -> HttpRequest:
        requests = self._all_requests()
        now = utcnow()
        existing = next((r for r in requests if request.id and r.id == request.id), None)
        if existing is None:
            saved = request.model_copy(update={
                "id": request.id or str(uuid.uuid4()),
                "created_at": now,
                "updated_at": now,
            })
            self._write(self.keys.requests, requests + [saved])
        else:
            saved = request.model_copy(update={"created_at": existing.created_at, "updated_at": now})
            self._replace(self.keys.requests, requests, saved)
        return saved

    async def move_request(self, request_id, new_collection_id):
        requests = self._all_requests()
        req = self._find(requests, request_id, "Request")
        if new_collection_id:
            self._find(self._collections(), new_collection_id, "Collection")
        self._replace(
            self.keys.requests,
            requests,
            req.model_copy(update={"collection_id": new_collection_id, "updated_at": utcnow()}),
        )

    async def rename_request(self, request_id, name):
        requests = self._all_requests()
        req = self._find(requests, request_id, "Request")
        self._replace(self.keys.requests, requests, req.model_copy(update={"name": name, "updated_at": utcnow()}))

    async def delete_request(self, request_id):
        requests = self._all_requests()
        self._find(requests, request_id, "Request")
        self._write(self.keys.requests, [r for r in requests if r.id != request_id])

    # --- Environments ---
    async def list_environments(self) -> List[Environment]:
        return self._environments()

    async def get_active_environment(self) -> Optional[Environment]:
        return next((e for e in self._environments() if e.is_active), None)

    async def create_environment(self, name, variables: Dict[str, str]) -> Environment:
        now = utcnow()
        env = Environment(id=str(uuid.uuid4()), name=name, variables=variables, created_at=now, updated_at=now)
        self._write(self.keys.environments, [env] + self._environments())
        return env

    async def update_environment(self, environment_id, name, variables) -> Environment:
        envs = self._environments()
        env = self._find(envs, environment_id, "Environment")
        updated = env.model_copy(update={"name": name, "variables": variables, "updated_at": utcnow()})
        self._replace(self.keys.environments, envs, updated)
        return updated

    async def delete_environment(self, environment_id):
        envs = self._environments()
        self._find(envs, environment_id, "Environment")
        self._write(self.keys.environments, [e for e in envs if e.id != environment_id])

    async def set_active_environment(self, environment_id):
        envs = self._environments()
        if environment_id:
            self._find(envs, environment_id, "Environment")
        self._write(
            self.keys.environments,
            [e.model_copy(update={"is_active": e.id == environment_id}) for e in envs],
        )

    # --- Execution, history, formatting ---
    async def send_request(self, payload: SendRequestPayload) -> HttpResponse:
        active = await self.get_active_environment()
        variables = active.variables if active else {}
        response = await http_engine.execute(payload, variables, client=self.http_client)
        entry = RequestHistory(
            id=str(uuid.uuid4()),
            request=HttpRequest(
                id=str(uuid.uuid4()),
                name=f"{payload.method} {payload.url}",
                method=payload.method,
                url=payload.url,
                headers=payload.headers,
                body=payload.body,
            ),
            response=response,
        )
        history = [entry] + self._read(self.keys.history, _history)
        self._write(self.keys.history, history[: self.history_max])
        return response

    async def list_history(self, limit=None) -> List[RequestHistory]:
        history = self._read(self.keys.history, _history)
        return history[:limit] if limit else history

    async def clear_history(self):
        self.r.set(self.keys.history, "[]")

    async def format_text(self, content: str) -> str:
        return http_engine.format_json(content)
