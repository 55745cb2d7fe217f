"""Postman Collection v2.1 import.

Folders become child collections of the imported root collection, so the
nested bundle lands in the workspace as an ordinary collection subtree.
"""
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, get_args

from .models import (
    AuthConfig,
    BasicAuth,
    BearerAuth,
    Collection,
    FormDataBody,
    FormFileField,
    FormTextField,
    HttpMethod,
    HttpRequest,
    JsonBody,
    RawBody,
    UrlEncodedBody,
    utcnow,
)

IMPORTED_SUFFIX = " (Imported from Postman)"
_METHODS = set(get_args(HttpMethod))


@dataclass
class ImportedBundle:
    root: Collection
    collections: List[Collection] = field(default_factory=list)
    requests: List[HttpRequest] = field(default_factory=list)


def _description(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("content")
    return value if isinstance(value, str) else None


def _params(block: Any) -> Dict[str, str]:
    # auth params come as [{key, value}] in v2.1 and as a plain dict in older exports
    if isinstance(block, dict):
        return {k: "" if v is None else str(v) for k, v in block.items()}
    out = {}
    for p in block or []:
        if isinstance(p, dict) and p.get("key"):
            out[p["key"]] = "" if p.get("value") is None else str(p.get("value"))
    return out


def convert_auth(auth: Any) -> Optional[AuthConfig]:
    if not isinstance(auth, dict):
        return None
    kind = auth.get("type")
    if kind == "basic":
        p = _params(auth.get("basic"))
        return AuthConfig(type="basic", basic=BasicAuth(username=p.get("username", ""), password=p.get("password", "")))
    if kind == "bearer":
        p = _params(auth.get("bearer"))
        return AuthConfig(type="bearer", bearer=BearerAuth(token=p.get("token", "")))
    if kind == "noauth":
        return AuthConfig(type="none")
    return None


def normalize_headers(request_block: Dict[str, Any]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for h in request_block.get("header") or []:
        if isinstance(h, dict) and not h.get("disabled"):
            k = h.get("key") or h.get("name")
            if k:
                out[k] = "" if h.get("value") is None else str(h.get("value"))
    return out


def extract_body(request_block: Dict[str, Any]):
    body = request_block.get("body")
    if not isinstance(body, dict):
        return None
    mode = body.get("mode")
    if mode == "raw":
        raw = body.get("raw") or ""
        language = ((body.get("options") or {}).get("raw") or {}).get("language")
        if language == "json":
            try:
                return JsonBody(value=json.loads(raw))
            except ValueError:
                return RawBody(content=raw, content_type="application/json")
        return RawBody(content=raw, content_type="text/plain")
    if mode == "urlencoded":
        return UrlEncodedBody(fields={
            p["key"]: "" if p.get("value") is None else str(p.get("value"))
            for p in body.get("urlencoded") or []
            if isinstance(p, dict) and p.get("key") and not p.get("disabled")
        })
    if mode == "formdata":
        fields = {}
        for p in body.get("formdata") or []:
            if not isinstance(p, dict) or not p.get("key") or p.get("disabled"):
                continue
            if p.get("type") == "file":
                src = p.get("src")
                fields[p["key"]] = FormFileField(path=src[0] if isinstance(src, list) and src else (src or ""))
            else:
                fields[p["key"]] = FormTextField(value="" if p.get("value") is None else str(p.get("value")))
        return FormDataBody(fields=fields)
    return None


def _url(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("raw") or ""
    return value or ""


def parse_postman_collection(json_data: str, id_factory: Callable[[], str] = lambda: str(uuid.uuid4())) -> ImportedBundle:
    if not json_data or not json_data.strip():
        raise ValueError("Empty JSON payload")
    try:
        parsed = json.loads(json_data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e.msg}") from e
    if not isinstance(parsed, dict) or not isinstance(parsed.get("item"), list):
        raise ValueError("Unsupported format (expected a Postman v2.1 collection with an 'item' list)")

    info = parsed.get("info") or {}
    now = utcnow()
    root = Collection(
        id=id_factory(),
        name=(info.get("name") or "Imported Collection") + IMPORTED_SUFFIX,
        description=_description(info.get("description")),
        auth=convert_auth(parsed.get("auth")),
        created_at=now,
        updated_at=now,
    )
    bundle = ImportedBundle(root=root, collections=[root])

    def to_request(node: Dict[str, Any], collection_id: str) -> HttpRequest:
        block = node.get("request") or {}
        if isinstance(block, str):
            block = {"url": block}
        method = (block.get("method") or "GET").upper()
        return HttpRequest(
            id=id_factory(),
            name=node.get("name") or "Untitled Request",
            method=method if method in _METHODS else "GET",
            url=_url(block.get("url")),
            headers=normalize_headers(block),
            body=extract_body(block),
            collection_id=collection_id,
            created_at=now,
            updated_at=now,
        )

    stack = [(parsed["item"], root.id)]
    while stack:
        items, parent_id = stack.pop()
        for node in items:
            if not isinstance(node, dict):
                continue
            if isinstance(node.get("item"), list):
                folder = Collection(
                    id=id_factory(),
                    name=node.get("name") or "Folder",
                    description=_description(node.get("description")),
                    parent_id=parent_id,
                    auth=convert_auth(node.get("auth")),
                    created_at=now,
                    updated_at=now,
                )
                bundle.collections.append(folder)
                stack.append((node["item"], folder.id))
            elif "request" in node:
                bundle.requests.append(to_request(node, parent_id))
    return bundle
