import asyncio
import json
from typing import Annotated, Any, Awaitable, Dict, Optional

from fastmcp import FastMCP
from loguru import logger
from mcp import ErrorData, McpError
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS
from pydantic import BaseModel, Field

from .backend import Backend, RpcBackend
from .config import Settings
from .errors import WorkspaceError, WorkspaceValidationError
from .logging_config import setup_logging
from .models import AuthConfig, HttpMethod
from .moves import DragItem
from .redis_backend import RedisBackend
from .store import WorkspaceStore


# --- Rich Tool Description model ---
class RichToolDescription(BaseModel):
    description: str
    use_when: str
    side_effects: Optional[str] = None


def _dump(value: Any) -> str:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif isinstance(value, list):
        value = [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value]
    return json.dumps(value, indent=2, default=str)


def to_mcp_error(e: WorkspaceError) -> McpError:
    code = INVALID_PARAMS if isinstance(e, WorkspaceValidationError) else INTERNAL_ERROR
    return McpError(ErrorData(code=code, message=e.message, data=e.to_dict()))


async def guarded(pending: Awaitable[Any]) -> Any:
    try:
        return await pending
    except WorkspaceError as e:
        raise to_mcp_error(e) from e


def _not_found(kind: str, item_id: str) -> McpError:
    return McpError(ErrorData(code=INVALID_PARAMS, message=f"{kind} {item_id} not found"))


def build_server(store: WorkspaceStore, name: str = "reqforge") -> FastMCP:
    """Expose one workspace as MCP tools."""
    mcp = FastMCP(name)

    # --- Workspace ---
    SnapshotDesc = RichToolDescription(
        description="Full workspace state: tabs, collections, cached requests, environments, history",
        use_when="You need to see what is open or how collections are nested",
    )

    @mcp.tool(description=SnapshotDesc.model_dump_json())
    async def get_workspace() -> str:
        return _dump(store.snapshot())

    # --- Tabs ---
    OpenTabDesc = RichToolDescription(
        description="Open a new request tab, optionally inside a collection",
        use_when="You want to draft a new request",
        side_effects="Adds a tab and makes it active",
    )

    @mcp.tool(description=OpenTabDesc.model_dump_json())
    async def open_tab(
        name: Annotated[Optional[str], Field(description="Request name")] = None,
        method: Annotated[Optional[HttpMethod], Field(description="HTTP method")] = None,
        url: Annotated[Optional[str], Field(description="Request URL")] = None,
        headers: Annotated[Optional[Dict[str, str]], Field(description="Request headers")] = None,
        collection_id: Annotated[Optional[str], Field(description="Collection the draft belongs to")] = None,
    ) -> str:
        seed = {k: v for k, v in {"name": name, "method": method, "url": url, "headers": headers}.items() if v is not None}
        return _dump(store.add_tab(seed, collection_id))

    OpenRequestDesc = RichToolDescription(
        description="Open a saved request in a tab, reusing the tab if it is already open",
        use_when="You want to view or edit a request listed in a collection",
    )

    @mcp.tool(description=OpenRequestDesc.model_dump_json())
    async def open_request(request_id: Annotated[str, Field(description="Saved request id")]) -> str:
        request = store.tree.find_request(request_id)
        if request is None:
            raise _not_found("Request", request_id)
        return _dump(store.load_request(request))

    @mcp.tool(description=RichToolDescription(
        description="Close a tab; the nearest remaining tab becomes active",
        use_when="A tab is no longer needed",
    ).model_dump_json())
    async def close_tab(tab_id: Annotated[str, Field(description="Tab id")]) -> str:
        closed = store.close_tab(tab_id)
        return _dump({"closed": closed is not None, "active_tab_id": store.tabs.active_tab_id})

    @mcp.tool(description=RichToolDescription(
        description="Switch the active tab",
        use_when="You want to work on a different open tab",
    ).model_dump_json())
    async def set_active_tab(tab_id: Annotated[str, Field(description="Tab id")]) -> str:
        return _dump({"changed": store.set_active_tab(tab_id), "active_tab_id": store.tabs.active_tab_id})

    EditTabDesc = RichToolDescription(
        description="Change fields of a tab's draft request (name, method, url, headers, body, path_params)",
        use_when="You are editing a request before sending or saving it",
        side_effects="Marks the tab unsaved",
    )

    @mcp.tool(description=EditTabDesc.model_dump_json())
    async def update_tab_request(
        tab_id: Annotated[str, Field(description="Tab id")],
        patch: Annotated[Dict[str, Any], Field(description="Fields to merge into the draft")],
    ) -> str:
        try:
            tab = store.update_tab_request(tab_id, patch)
        except ValueError as e:
            raise McpError(ErrorData(code=INVALID_PARAMS, message=str(e))) from e
        if tab is None:
            raise _not_found("Tab", tab_id)
        return _dump(tab)

    @mcp.tool(description=RichToolDescription(
        description="Headers a tab's request would be sent with, including inherited collection auth",
        use_when="You need to check which Authorization header applies",
    ).model_dump_json())
    async def resolved_headers(tab_id: Annotated[str, Field(description="Tab id")]) -> str:
        headers = store.resolved_headers(tab_id)
        if headers is None:
            raise _not_found("Tab", tab_id)
        return _dump(headers)

    @mcp.tool(description=RichToolDescription(
        description="{{variables}} and :path parameters a tab's request refers to, and which variables the active environment lacks",
        use_when="You want to know what must be filled in before sending",
    ).model_dump_json())
    async def request_placeholders(tab_id: Annotated[str, Field(description="Tab id")]) -> str:
        found = store.request_placeholders(tab_id)
        if found is None:
            raise _not_found("Tab", tab_id)
        return _dump(found)

    SendDesc = RichToolDescription(
        description="Send the request in a tab using collection auth and the active environment",
        use_when="You want to execute a drafted or saved request",
        side_effects="Stores the response on the tab and appends to history",
    )

    @mcp.tool(description=SendDesc.model_dump_json())
    async def send_request(tab_id: Annotated[str, Field(description="Tab id")]) -> str:
        response = await guarded(store.send_request(tab_id))
        if response is None:
            raise _not_found("Tab", tab_id)
        return _dump(response)

    SaveDesc = RichToolDescription(
        description="Save a tab's request, creating it on first save",
        use_when="You want to keep a request in a collection",
        side_effects="Persists the request and marks the tab saved",
    )

    @mcp.tool(description=SaveDesc.model_dump_json())
    async def save_request(
        tab_id: Annotated[str, Field(description="Tab id")],
        name: Annotated[str, Field(description="Name to save under")],
        collection_id: Annotated[Optional[str], Field(description="Target collection id or 'root'")] = None,
    ) -> str:
        saved = await guarded(store.save_request(tab_id, name, collection_id))
        if saved is None:
            raise _not_found("Tab", tab_id)
        return _dump(saved)

    # --- Collections ---
    @mcp.tool(description=RichToolDescription(
        description="Reload and list all collections",
        use_when="You need the current collection tree",
    ).model_dump_json())
    async def list_collections() -> str:
        return _dump(await guarded(store.load_collections()))

    CreateCollectionDesc = RichToolDescription(
        description="Create a collection, optionally nested under a parent",
        use_when="You want a new folder for requests",
    )

    @mcp.tool(description=CreateCollectionDesc.model_dump_json())
    async def create_collection(
        name: Annotated[str, Field(description="Collection name")],
        description: Annotated[Optional[str], Field(description="Optional description")] = None,
        parent_id: Annotated[Optional[str], Field(description="Parent collection id or 'root'")] = None,
    ) -> str:
        return _dump(await guarded(store.create_collection(name, description, parent_id)))

    @mcp.tool(description=RichToolDescription(
        description="Rename a collection",
        use_when="A collection needs a new name",
    ).model_dump_json())
    async def rename_collection(
        collection_id: Annotated[str, Field(description="Collection id")],
        name: Annotated[str, Field(description="New name")],
    ) -> str:
        renamed = await guarded(store.rename_collection(collection_id, name))
        if renamed is None:
            raise _not_found("Collection", collection_id)
        return _dump(renamed)

    @mcp.tool(description=RichToolDescription(
        description="Move a collection under another collection or to the top level ('root')",
        use_when="You are reorganising the collection tree",
        side_effects="Rejects moves into the collection's own subtree",
    ).model_dump_json())
    async def move_collection(
        collection_id: Annotated[str, Field(description="Collection id")],
        new_parent_id: Annotated[Optional[str], Field(description="New parent id, 'root' or null")] = None,
    ) -> str:
        moved = await guarded(store.move_collection(collection_id, new_parent_id))
        return _dump({"moved": moved})

    DeleteCollectionDesc = RichToolDescription(
        description="Delete a collection with all nested collections and their requests",
        use_when="A collection is no longer needed",
        side_effects="Closes every tab showing a request from the deleted subtree",
    )

    @mcp.tool(description=DeleteCollectionDesc.model_dump_json())
    async def delete_collection(collection_id: Annotated[str, Field(description="Collection id")]) -> str:
        result = await guarded(store.delete_collection(collection_id))
        if result is None:
            raise _not_found("Collection", collection_id)
        return _dump({
            "removed_ids": sorted(result.removed_ids),
            "closed_tab_ids": [t.id for t in result.closed_tabs],
            "active_tab_id": store.tabs.active_tab_id,
        })

    @mcp.tool(description=RichToolDescription(
        description="Set or clear the auth a collection passes down to its requests and sub-collections",
        use_when="Requests in a collection need basic or bearer auth",
    ).model_dump_json())
    async def set_collection_auth(
        collection_id: Annotated[str, Field(description="Collection id")],
        auth: Annotated[Optional[AuthConfig], Field(description="Auth config, null to clear")] = None,
    ) -> str:
        updated = await guarded(store.update_collection_auth(collection_id, auth))
        if updated is None:
            raise _not_found("Collection", collection_id)
        return _dump(updated)

    ImportDesc = RichToolDescription(
        description="Import a Postman v2.1 collection JSON; folders become nested collections",
        use_when="You have an exported Postman collection",
        side_effects="Creates collections and requests, reloads the tree",
    )

    @mcp.tool(description=ImportDesc.model_dump_json())
    async def import_postman_collection(
        json_data: Annotated[str, Field(description="Raw Postman collection JSON")],
    ) -> str:
        return _dump(await guarded(store.import_collection_bundle(json_data)))

    @mcp.tool(description=RichToolDescription(
        description="Export one collection and the requests filed directly in it as JSON",
        use_when="You want to back up or share a collection",
    ).model_dump_json())
    async def export_collection(collection_id: Annotated[str, Field(description="Collection id")]) -> str:
        exported = await guarded(store.export_collection(collection_id))
        if exported is None:
            raise _not_found("Collection", collection_id)
        return _dump(exported)

    @mcp.tool(description=RichToolDescription(
        description="Re-import JSON produced by export_collection as a new top-level collection",
        use_when="You have a collection export to restore or duplicate",
        side_effects="Creates a collection with fresh ids and reloads the tree",
    ).model_dump_json())
    async def import_collection(
        export_json: Annotated[str, Field(description="JSON returned by export_collection")],
    ) -> str:
        return _dump(await guarded(store.import_collection(export_json)))

    @mcp.tool(description=RichToolDescription(
        description="Select a collection and load its requests",
        use_when="You want to browse the requests inside a collection",
    ).model_dump_json())
    async def open_collection(collection_id: Annotated[str, Field(description="Collection id or 'root'")]) -> str:
        if collection_id != "root" and not store.set_selected_collection(collection_id):
            raise _not_found("Collection", collection_id)
        return _dump(await guarded(store.load_collection_requests(collection_id)))

    # --- Requests ---
    @mcp.tool(description=RichToolDescription(
        description="Rename a saved request everywhere it is shown",
        use_when="A saved request needs a new name",
    ).model_dump_json())
    async def rename_request(
        request_id: Annotated[str, Field(description="Request id")],
        name: Annotated[str, Field(description="New name")],
    ) -> str:
        touched = await guarded(store.rename_request(request_id, name))
        return _dump({"renamed": request_id, "tabs_updated": touched})

    @mcp.tool(description=RichToolDescription(
        description="Move a saved request to another collection or to the top level ('root')",
        use_when="You are reorganising requests",
    ).model_dump_json())
    async def move_request(
        request_id: Annotated[str, Field(description="Request id")],
        new_collection_id: Annotated[Optional[str], Field(description="Target collection id, 'root' or null")] = None,
    ) -> str:
        return _dump({"moved": await guarded(store.move_request(request_id, new_collection_id))})

    @mcp.tool(description=RichToolDescription(
        description="Delete a saved request",
        use_when="A request is no longer needed",
        side_effects="Closes tabs showing the request",
    ).model_dump_json())
    async def delete_request(request_id: Annotated[str, Field(description="Request id")]) -> str:
        closed = await guarded(store.delete_request(request_id))
        return _dump({"deleted": request_id, "closed_tab_ids": [t.id for t in closed]})

    DropDesc = RichToolDescription(
        description="Apply a finished drag-and-drop of a collection or request onto a drop target",
        use_when="A sidebar item was dropped onto a collection or the root area",
    )

    @mcp.tool(description=DropDesc.model_dump_json())
    async def drag_end(
        active: Annotated[DragItem, Field(description="Dragged item: id and type")],
        over: Annotated[Optional[DragItem], Field(description="Drop target: id, type and containing collection")] = None,
    ) -> str:
        intent = await guarded(store.drag_end({"active": active, "over": over}))
        if intent is None:
            return _dump({"moved": False})
        return _dump({"moved": True, "kind": intent.kind, "item_id": intent.item_id, "target_id": intent.target_id})

    # --- Environments ---
    @mcp.tool(description=RichToolDescription(
        description="Reload and list environments with the active one",
        use_when="You need available {{variables}}",
    ).model_dump_json())
    async def list_environments() -> str:
        environments = await guarded(store.load_environments())
        active = store.active_environment.id if store.active_environment else None
        return _dump({"environments": [e.model_dump(mode="json") for e in environments], "active_id": active})

    @mcp.tool(description=RichToolDescription(
        description="Create an environment of {{variable}} values",
        use_when="You need a new set of variables such as base URLs or tokens",
    ).model_dump_json())
    async def create_environment(
        name: Annotated[str, Field(description="Environment name")],
        variables: Annotated[Dict[str, str], Field(description="Variables")],
    ) -> str:
        return _dump(await guarded(store.create_environment(name, variables)))

    @mcp.tool(description=RichToolDescription(
        description="Replace an environment's name and variables",
        use_when="Environment values changed",
    ).model_dump_json())
    async def update_environment(
        environment_id: Annotated[str, Field(description="Environment id")],
        name: Annotated[str, Field(description="Environment name")],
        variables: Annotated[Dict[str, str], Field(description="Variables")],
    ) -> str:
        return _dump(await guarded(store.update_environment(environment_id, name, variables)))

    @mcp.tool(description=RichToolDescription(
        description="Delete an environment",
        use_when="An environment is no longer needed",
    ).model_dump_json())
    async def delete_environment(environment_id: Annotated[str, Field(description="Environment id")]) -> str:
        return _dump({"deleted": await guarded(store.delete_environment(environment_id))})

    @mcp.tool(description=RichToolDescription(
        description="Activate an environment, or pass null to deactivate",
        use_when="You want {{variables}} resolved from a different environment",
    ).model_dump_json())
    async def set_active_environment(
        environment_id: Annotated[Optional[str], Field(description="Environment id or null")] = None,
    ) -> str:
        changed = await guarded(store.set_active_environment(environment_id))
        if not changed:
            raise _not_found("Environment", str(environment_id))
        return _dump({"active_id": environment_id})

    # --- History & utilities ---
    @mcp.tool(description=RichToolDescription(
        description="Recent request history, newest first",
        use_when="You want to look at earlier responses",
    ).model_dump_json())
    async def get_history(
        limit: Annotated[Optional[int], Field(description="Maximum entries", ge=1)] = None,
    ) -> str:
        return _dump(await guarded(store.load_history(limit)))

    @mcp.tool(description=RichToolDescription(
        description="Delete all request history",
        use_when="History is no longer needed",
    ).model_dump_json())
    async def clear_history() -> str:
        return _dump({"cleared": await guarded(store.clear_history())})

    @mcp.tool(description=RichToolDescription(
        description="Pretty-print JSON text",
        use_when="A body is minified or hard to read",
    ).model_dump_json())
    async def format_json(content: Annotated[str, Field(description="JSON text")]) -> str:
        return await guarded(store.format_json(content))

    @mcp.tool(description=RichToolDescription(
        description="Collapse or expand the sidebar",
        use_when="A client mirrors sidebar state",
    ).model_dump_json())
    async def set_sidebar_collapsed(collapsed: Annotated[bool, Field(description="Collapsed")]) -> str:
        store.set_sidebar_collapsed(collapsed)
        return _dump({"sidebar_collapsed": store.sidebar_collapsed})

    return mcp


def build_backend(settings: Settings) -> Backend:
    if settings.backend == "rpc":
        return RpcBackend(settings.rpc_url, timeout=settings.rpc_timeout)
    backend = RedisBackend.from_settings(settings)
    backend.ensure_data()
    return backend


# --- Run MCP Server ---
async def main():
    settings = Settings.from_env()
    setup_logging(settings)
    backend = build_backend(settings)
    store = WorkspaceStore(backend, settings)
    await store.initialize()
    mcp = build_server(store)
    logger.bind(operation="main").info(
        f"Starting MCP server on http://{settings.host}:{settings.port} ({settings.backend} backend)"
    )
    try:
        await mcp.run_async("streamable-http", host=settings.host, port=settings.port)
    finally:
        if isinstance(backend, RpcBackend):
            await backend.aclose()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
