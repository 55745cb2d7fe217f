import re
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

# Reserved id meaning "no parent / top level" in moves and drop targets
ROOT_ID = "root"
UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def is_valid_id(value: Any) -> bool:
    """UUID-shaped ids and the ROOT_ID sentinel are the only recognised ids."""
    return isinstance(value, str) and (value == ROOT_ID or bool(UUID_PATTERN.match(value)))


def parent_or_none(collection_id: Optional[str]) -> Optional[str]:
    return None if collection_id in (None, "", ROOT_ID) else collection_id


HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]
AuthType = Literal["none", "basic", "bearer"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Auth ---
class BasicAuth(BaseModel):
    username: str = ""
    password: str = ""


class BearerAuth(BaseModel):
    token: str = ""


class AuthConfig(BaseModel):
    type: AuthType = "none"
    basic: Optional[BasicAuth] = None
    bearer: Optional[BearerAuth] = None


# --- Request bodies (closed union, one variant per body kind) ---
class RawBody(BaseModel):
    kind: Literal["raw"] = "raw"
    content: str = ""
    content_type: str = "text/plain"


class JsonBody(BaseModel):
    kind: Literal["json"] = "json"
    value: Any = None


class FormTextField(BaseModel):
    kind: Literal["text"] = "text"
    value: str = ""


class FormFileField(BaseModel):
    kind: Literal["file"] = "file"
    path: str


FormField = Annotated[Union[FormTextField, FormFileField], Field(discriminator="kind")]


class FormDataBody(BaseModel):
    kind: Literal["form_data"] = "form_data"
    fields: Dict[str, FormField] = Field(default_factory=dict)


class UrlEncodedBody(BaseModel):
    kind: Literal["url_encoded"] = "url_encoded"
    fields: Dict[str, str] = Field(default_factory=dict)


RequestBody = Annotated[
    Union[RawBody, JsonBody, FormDataBody, UrlEncodedBody],
    Field(discriminator="kind"),
]


# --- Persisted entities ---
class HttpRequest(BaseModel):
    id: Optional[str] = None
    name: str = "New Request"
    method: HttpMethod = "GET"
    url: str = "https://"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[RequestBody] = None
    path_params: Dict[str, str] = Field(default_factory=dict)
    collection_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class HttpResponse(BaseModel):
    status: int
    status_text: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str = ""
    formatted_body: Optional[str] = None
    response_time: int = 0  # milliseconds
    size: int = 0  # bytes
    content_type: Optional[str] = None


class Collection(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    parent_id: Optional[str] = None
    auth: Optional[AuthConfig] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CollectionExport(BaseModel):
    """Portable copy of one collection and the requests filed directly in it."""

    collection: Collection
    requests: List[HttpRequest] = Field(default_factory=list)
    exported_at: datetime = Field(default_factory=utcnow)
    version: str = "1.0"


class Environment(BaseModel):
    id: str
    name: str
    variables: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RequestHistory(BaseModel):
    id: str
    request: HttpRequest
    response: Optional[HttpResponse] = None
    timestamp: datetime = Field(default_factory=utcnow)


class SendRequestPayload(BaseModel):
    method: HttpMethod = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[RequestBody] = None
    path_params: Dict[str, str] = Field(default_factory=dict)
    timeout: int = 30  # seconds


# --- Client-side state ---
class Tab(BaseModel):
    id: str
    name: str
    request: HttpRequest
    response: Optional[HttpResponse] = None
    loading: bool = False
    saved: bool = False


class Notification(BaseModel):
    level: Literal["success", "error", "info"]
    message: str
    operation: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class WorkspaceSnapshot(BaseModel):
    """Read-only copy of the whole workspace handed to consumers."""

    tabs: List[Tab] = Field(default_factory=list)
    active_tab_id: Optional[str] = None
    collections: List[Collection] = Field(default_factory=list)
    collection_requests: Dict[str, List[HttpRequest]] = Field(default_factory=dict)
    collection_requests_loading: Dict[str, bool] = Field(default_factory=dict)
    selected_collection_id: Optional[str] = None
    sidebar_collapsed: bool = False
    environments: List[Environment] = Field(default_factory=list)
    active_environment: Optional[Environment] = None
    history: List[RequestHistory] = Field(default_factory=list)
    collections_loading: bool = False
    environments_loading: bool = False
    history_loading: bool = False
    active_drag_id: Optional[str] = None
    drag_over_target: Optional[str] = None
