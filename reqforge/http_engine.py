import json
import mimetypes
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import httpx

from .models import FormDataBody, HttpResponse, JsonBody, RawBody, SendRequestPayload, UrlEncodedBody
from .variables import apply_to_body, replace_path_parameters, resolve_variables


def format_json(content: str) -> str:
    try:
        value = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e.msg}") from e
    return json.dumps(value, indent=2, ensure_ascii=False)


def format_body(body: str, content_type: Optional[str]) -> Optional[str]:
    ct = (content_type or "").lower()
    if "json" in ct or (not ct and body.lstrip()[:1] in ("{", "[")):
        try:
            return format_json(body)
        except ValueError:
            return None
    return None


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    return any(k.lower() == name.lower() for k in headers)


def _file_part(path: str):
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File does not exist at path: '{path}'")
    if not p.is_file():
        raise IsADirectoryError(f"Path '{path}' is not a file")
    mime = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
    return (p.name, p.read_bytes(), mime)


def build_request_kwargs(payload: SendRequestPayload, variables: Mapping[str, str]) -> Dict[str, Any]:
    url = resolve_variables(replace_path_parameters(payload.url, payload.path_params), variables)
    headers = {resolve_variables(k, variables): resolve_variables(v, variables) for k, v in payload.headers.items()}
    body = apply_to_body(payload.body, variables)
    kwargs: Dict[str, Any] = {"method": payload.method, "url": url, "headers": headers}
    if isinstance(body, RawBody):
        if not _has_header(headers, "Content-Type"):
            headers["Content-Type"] = body.content_type
        kwargs["content"] = body.content
    elif isinstance(body, JsonBody):
        kwargs["json"] = body.value
    elif isinstance(body, UrlEncodedBody):
        kwargs["data"] = dict(body.fields)
    elif isinstance(body, FormDataBody):
        data = {k: f.value for k, f in body.fields.items() if f.kind == "text"}
        files = {k: _file_part(f.path) for k, f in body.fields.items() if f.kind == "file"}
        kwargs["data"] = data
        if files:
            kwargs["files"] = files
    return kwargs


async def execute(
    payload: SendRequestPayload,
    variables: Optional[Mapping[str, str]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> HttpResponse:
    """Issue one outbound request and measure it."""
    kwargs = build_request_kwargs(payload, variables or {})
    own_client = client is None
    client = client or httpx.AsyncClient(follow_redirects=True)
    started = time.time()
    try:
        r = await client.request(timeout=payload.timeout, **kwargs)
    finally:
        if own_client:
            await client.aclose()
    elapsed = int((time.time() - started) * 1000)
    content_type = r.headers.get("content-type")
    return HttpResponse(
        status=r.status_code,
        status_text=r.reason_phrase,
        headers=dict(r.headers),
        body=r.text,
        formatted_body=format_body(r.text, content_type),
        response_time=elapsed,
        size=len(r.content),
        content_type=content_type,
    )
