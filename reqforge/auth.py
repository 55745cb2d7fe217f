import base64
from typing import Dict, Iterable, Mapping, Optional, Union

from .models import AuthConfig, Collection, HttpRequest

CollectionLookup = Union[Mapping[str, Collection], Iterable[Collection]]


def generate_auth_headers(auth: Optional[AuthConfig]) -> Dict[str, str]:
    """Headers derived from a single auth config; empty fields yield nothing."""
    if not auth or auth.type == "none":
        return {}
    if auth.type == "basic" and auth.basic and auth.basic.username and auth.basic.password:
        token = base64.b64encode(f"{auth.basic.username}:{auth.basic.password}".encode()).decode()
        return {"Authorization": f"Basic {token}"}
    if auth.type == "bearer" and auth.bearer and auth.bearer.token:
        return {"Authorization": f"Bearer {auth.bearer.token}"}
    return {}


def _as_lookup(collections: CollectionLookup) -> Mapping[str, Collection]:
    if isinstance(collections, Mapping):
        return collections
    return {c.id: c for c in collections}


def collection_auth_headers(collection_id: Optional[str], collections: CollectionLookup) -> Dict[str, str]:
    """Walk from the collection towards the root and return the first usable auth.

    The visited set stops the walk if the parent chain ever loops back on
    itself; TreeIndex rejects such trees on write so this only matters for
    corrupted data coming from the backend.
    """
    lookup = _as_lookup(collections)
    visited = set()
    current = collection_id
    while current and current not in visited:
        visited.add(current)
        collection = lookup.get(current)
        if collection is None:
            return {}
        headers = generate_auth_headers(collection.auth)
        if headers:
            return headers
        current = collection.parent_id
    return {}


def merge_headers(request_headers: Mapping[str, str], auth_headers: Mapping[str, str]) -> Dict[str, str]:
    # Request headers win. Keys are compared case-sensitively.
    return {**auth_headers, **request_headers}


def resolve_request_headers(request: HttpRequest, collections: CollectionLookup) -> Dict[str, str]:
    return merge_headers(request.headers, collection_auth_headers(request.collection_id, collections))
