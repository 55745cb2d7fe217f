import json
import re
from typing import Any, Dict, List, Mapping, Optional

from .models import FormDataBody, HttpRequest, JsonBody, RawBody, UrlEncodedBody

_VAR_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
_PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_PATH_SPLIT = re.compile(r"[/?&=]")


def resolve_variables(raw: str, variables: Mapping[str, str]) -> str:
    # unknown names are left as written
    return _VAR_PATTERN.sub(lambda m: str(variables.get(m.group(1), m.group(0))), raw)


def deep_apply(obj: Any, variables: Mapping[str, str]) -> Any:
    if obj is None:
        return obj
    if isinstance(obj, str):
        return resolve_variables(obj, variables)
    if isinstance(obj, list):
        return [deep_apply(v, variables) for v in obj]
    if isinstance(obj, dict):
        return {deep_apply(k, variables): deep_apply(v, variables) for k, v in obj.items()}
    return obj


def replace_path_parameters(url: str, path_params: Mapping[str, str]) -> str:
    for key, value in path_params.items():
        url = url.replace(f":{key}", value)
    return url


def apply_to_body(body: Optional[Any], variables: Mapping[str, str]) -> Optional[Any]:
    """Substitute variables inside every body variant."""
    if body is None or not variables:
        return body
    if isinstance(body, RawBody):
        return body.model_copy(update={
            "content": resolve_variables(body.content, variables),
            "content_type": resolve_variables(body.content_type, variables),
        })
    if isinstance(body, JsonBody):
        return body.model_copy(update={"value": deep_apply(body.value, variables)})
    if isinstance(body, UrlEncodedBody):
        return body.model_copy(update={"fields": deep_apply(body.fields, variables)})
    if isinstance(body, FormDataBody):
        fields: Dict[str, Any] = {}
        for key, field in body.fields.items():
            if field.kind == "text":
                field = field.model_copy(update={"value": resolve_variables(field.value, variables)})
            else:
                field = field.model_copy(update={"path": resolve_variables(field.path, variables)})
            fields[resolve_variables(key, variables)] = field
        return body.model_copy(update={"fields": fields})
    return body


def extract_variables(text: str) -> List[str]:
    """``{{name}}`` placeholders in order of appearance, repeats included."""
    return [name for name in _PLACEHOLDER.findall(text or "") if name]


def extract_path_parameters(url: str) -> List[str]:
    return [seg[1:] for seg in _PATH_SPLIT.split(url or "") if seg.startswith(":") and len(seg) > 1]


def request_placeholders(request: HttpRequest) -> Dict[str, List[str]]:
    """Distinct variable and path-parameter names a request refers to."""
    texts = [request.url, *request.headers.keys(), *request.headers.values()]
    body = request.body
    if body is not None:
        texts.append(json.dumps(body.model_dump(mode="json")))
    names: List[str] = []
    for text in texts:
        for name in extract_variables(text):
            if name not in names:
                names.append(name)
    params: List[str] = []
    for name in extract_path_parameters(request.url):
        if name not in params:
            params.append(name)
    return {"variables": names, "path_params": params}
