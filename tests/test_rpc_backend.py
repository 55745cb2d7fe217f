import json

import httpx
import pytest

from reqforge.backend import RpcBackend
from reqforge.errors import BackendError, RpcError
from reqforge.models import HttpRequest
from reqforge.store import WorkspaceStore


def rpc_client(results):
    """MockTransport answering JSON-RPC calls from a method -> result (or error dict) map."""
    calls = []

    def handler(request: httpx.Request):
        message = json.loads(request.content)
        calls.append(message)
        reply = {"jsonrpc": "2.0", "id": message["id"]}
        outcome = results.get(message["method"])
        if isinstance(outcome, dict) and "error" in outcome:
            reply["error"] = outcome["error"]
        else:
            reply["result"] = outcome
        return httpx.Response(200, json=reply)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), calls


@pytest.mark.asyncio
async def test_call_shapes_json_rpc_messages():
    client, calls = rpc_client({"move_request": None})
    async with RpcBackend("http://backend/rpc", client=client) as backend:
        await backend.move_request("r1", None)
    assert calls == [{
        "jsonrpc": "2.0",
        "id": 1,
        "method": "move_request",
        "params": {"request_id": "r1", "new_collection_id": None},
    }]
    await client.aclose()


@pytest.mark.asyncio
async def test_models_are_sent_as_json():
    client, calls = rpc_client({"save_request": {"id": "r1", "name": "Saved"}})
    backend = RpcBackend("http://backend/rpc", client=client)
    result = await backend.save_request(HttpRequest(name="Saved"))
    assert result == {"id": "r1", "name": "Saved"}
    assert calls[0]["params"]["payload"]["name"] == "Saved"
    assert calls[0]["params"]["payload"]["method"] == "GET"
    await client.aclose()


@pytest.mark.asyncio
async def test_error_reply_raises_rpc_error():
    client, _ = rpc_client({"delete_collection": {"error": {"code": -32010, "message": "locked"}}})
    backend = RpcBackend("http://backend/rpc", client=client)
    with pytest.raises(RpcError) as exc:
        await backend.delete_collection("c1")
    assert exc.value.code == -32010
    await client.aclose()


@pytest.mark.asyncio
async def test_store_over_rpc_validates_wire_results():
    client, _ = rpc_client({
        "get_collections": [{"id": "c1", "name": "Wire", "created_at": "2024-01-01T00:00:00Z",
                             "updated_at": "2024-01-01T00:00:00Z"}],
        "get_requests": {"error": {"code": -32000, "message": "db offline"}},
    })
    store = WorkspaceStore(RpcBackend("http://backend/rpc", client=client))
    collections = await store.load_collections()
    assert collections[0].name == "Wire"
    with pytest.raises(BackendError, match="db offline"):
        await store.load_collection_requests("c1")
    await client.aclose()


@pytest.mark.asyncio
async def test_export_and_import_commands():
    exported = {"collection": {"id": "c1", "name": "Billing"}, "requests": [], "version": "1.0"}
    client, calls = rpc_client({"export_collection": exported, "import_collection": {"id": "c2", "name": "Billing (Imported)"}})
    backend = RpcBackend("http://backend/rpc", client=client)
    assert await backend.export_collection("c1") == exported
    await backend.import_collection(exported)
    assert [(c["method"], c["params"]) for c in calls] == [
        ("export_collection", {"collection_id": "c1"}),
        ("import_collection", {"data": exported}),
    ]
    await client.aclose()
