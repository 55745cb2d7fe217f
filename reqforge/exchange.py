"""Native collection export and re-import.

An export carries one collection and the requests filed directly in it.
Re-importing never reuses ids: the collection and every request get fresh
ones, and the copy lands at the top level.
"""
import json
import uuid
from typing import Any, Callable, Dict, Iterable, Union

from .models import Collection, CollectionExport, HttpRequest, utcnow
from .postman import ImportedBundle

EXPORT_VERSION = "1.0"
REIMPORTED_SUFFIX = " (Imported)"


def export_collection(collection: Collection, requests: Iterable[HttpRequest]) -> CollectionExport:
    return CollectionExport(
        collection=collection,
        requests=[r for r in requests if r.collection_id == collection.id],
        version=EXPORT_VERSION,
    )


def parse_collection_export(
    data: Union[str, Dict[str, Any]],
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> ImportedBundle:
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise ValueError("Invalid export format: expected an object")
    for key in ("collection", "requests"):
        if key not in data:
            raise ValueError(f"Invalid export format: missing {key}")
    exported = CollectionExport.model_validate(data)

    now = utcnow()
    root = exported.collection.model_copy(update={
        "id": id_factory(),
        "name": exported.collection.name + REIMPORTED_SUFFIX,
        "parent_id": None,
        "created_at": now,
        "updated_at": now,
    })
    requests = [
        r.model_copy(update={"id": id_factory(), "collection_id": root.id, "created_at": now, "updated_at": now})
        for r in exported.requests
    ]
    return ImportedBundle(root=root, collections=[root], requests=requests)
