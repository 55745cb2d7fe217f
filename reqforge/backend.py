import itertools
from typing import Any, Dict, List, Optional, Protocol

import httpx
from loguru import logger
from pydantic import BaseModel

from .errors import RpcError
from .models import (
    AuthConfig,
    Collection,
    CollectionExport,
    Environment,
    HttpRequest,
    HttpResponse,
    RequestHistory,
    SendRequestPayload,
)


class Backend(Protocol):
    """Persistence and execution operations reachable across the RPC boundary.

    Implementations may return the models below or their JSON form; the
    SyncCoordinator validates every result before it touches local state.
    """

    # --- Collections ---
    async def list_collections(self) -> List[Collection]: ...

    async def create_collection(
        self, name: str, description: Optional[str] = None, parent_id: Optional[str] = None
    ) -> Collection: ...

    async def rename_collection(self, collection_id: str, name: str) -> None: ...

    async def move_collection(self, collection_id: str, new_parent_id: Optional[str]) -> None: ...

    async def delete_collection(self, collection_id: str) -> None: ...

    async def set_collection_auth(self, collection_id: str, auth: Optional[AuthConfig]) -> None: ...

    async def import_collection_bundle(self, json_data: str) -> Collection: ...

    async def export_collection(self, collection_id: str) -> CollectionExport: ...

    async def import_collection(self, data: Dict[str, Any]) -> Collection: ...

    # --- Requests ---
    async def list_requests(self, collection_id: Optional[str]) -> List[HttpRequest]: ...

    async def save_request(self, request: HttpRequest) -> HttpRequest: ...

    async def move_request(self, request_id: str, new_collection_id: Optional[str]) -> None: ...

    async def rename_request(self, request_id: str, name: str) -> None: ...

    async def delete_request(self, request_id: str) -> None: ...

    # --- Environments ---
    async def list_environments(self) -> List[Environment]: ...

    async def get_active_environment(self) -> Optional[Environment]: ...

    async def create_environment(self, name: str, variables: Dict[str, str]) -> Environment: ...

    async def update_environment(self, environment_id: str, name: str, variables: Dict[str, str]) -> Environment: ...

    async def delete_environment(self, environment_id: str) -> None: ...

    async def set_active_environment(self, environment_id: Optional[str]) -> None: ...

    # --- Execution, history, formatting ---
    async def send_request(self, payload: SendRequestPayload) -> HttpResponse: ...

    async def list_history(self, limit: Optional[int] = None) -> List[RequestHistory]: ...

    async def clear_history(self) -> None: ...

    async def format_text(self, content: str) -> str: ...


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class RpcBackend:
    """JSON-RPC 2.0 client for a remote workspace backend.

    Results are returned as decoded JSON. Error replies raise RpcError,
    transport failures propagate as httpx exceptions.
    """

    def __init__(self, url: str, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._ids = itertools.count(1)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def call(self, method: str, **params: Any) -> Any:
        message = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": {k: _jsonable(v) for k, v in params.items()},
        }
        logger.bind(operation=method).debug(f"rpc -> {self.url}")
        r = await self._client.post(self.url, json=message)
        r.raise_for_status()
        reply = r.json()
        if reply.get("error"):
            err = reply["error"]
            raise RpcError(err.get("message", "RPC error"), code=err.get("code", -32000), data=err.get("data"))
        return reply.get("result")

    # --- Collections ---
    async def list_collections(self):
        return await self.call("get_collections")

    async def create_collection(self, name, description=None, parent_id=None):
        return await self.call("create_collection", name=name, description=description, parent_id=parent_id)

    async def rename_collection(self, collection_id, name):
        await self.call("update_collection_name", collection_id=collection_id, name=name)

    async def move_collection(self, collection_id, new_parent_id):
        await self.call("move_collection", collection_id=collection_id, new_parent_id=new_parent_id)

    async def delete_collection(self, collection_id):
        await self.call("delete_collection", id=collection_id)

    async def set_collection_auth(self, collection_id, auth):
        await self.call("update_collection_auth", collection_id=collection_id, auth=auth)

    async def import_collection_bundle(self, json_data):
        return await self.call("import_postman_collection", json_data=json_data)

    async def export_collection(self, collection_id):
        return await self.call("export_collection", collection_id=collection_id)

    async def import_collection(self, data):
        return await self.call("import_collection", data=data)

    # --- Requests ---
    async def list_requests(self, collection_id):
        return await self.call("get_requests", collection_id=collection_id)

    async def save_request(self, request):
        return await self.call("save_request", payload=request)

    async def move_request(self, request_id, new_collection_id):
        await self.call("move_request", request_id=request_id, new_collection_id=new_collection_id)

    async def rename_request(self, request_id, name):
        await self.call("update_request_name", request_id=request_id, name=name)

    async def delete_request(self, request_id):
        await self.call("delete_request", id=request_id)

    # --- Environments ---
    async def list_environments(self):
        return await self.call("get_environments")

    async def get_active_environment(self):
        return await self.call("get_active_environment")

    async def create_environment(self, name, variables):
        return await self.call("create_environment", name=name, variables=variables)

    async def update_environment(self, environment_id, name, variables):
        return await self.call("update_environment", id=environment_id, name=name, variables=variables)

    async def delete_environment(self, environment_id):
        await self.call("delete_environment", id=environment_id)

    async def set_active_environment(self, environment_id):
        await self.call("set_active_environment", id=environment_id)

    # --- Execution, history, formatting ---
    async def send_request(self, payload):
        return await self.call("send_request", payload=payload)

    async def list_history(self, limit=None):
        return await self.call("get_request_history", limit=limit)

    async def clear_history(self):
        await self.call("clear_request_history")

    async def format_text(self, content):
        return await self.call("format_json", content=content)
