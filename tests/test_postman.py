import json

import pytest

from reqforge.models import FormDataBody, JsonBody, RawBody, UrlEncodedBody
from reqforge.postman import IMPORTED_SUFFIX, convert_auth, parse_postman_collection

SAMPLE = {
    "info": {"name": "Shop", "description": {"content": "Shop API"}},
    "auth": {"type": "bearer", "bearer": [{"key": "token", "value": "abc"}]},
    "item": [
        {
            "name": "Orders",
            "auth": {"type": "noauth"},
            "item": [
                {
                    "name": "Create order",
                    "request": {
                        "method": "POST",
                        "url": {"raw": "{{base}}/orders"},
                        "header": [
                            {"key": "X-Trace", "value": "1"},
                            {"key": "X-Off", "value": "0", "disabled": True},
                        ],
                        "body": {"mode": "raw", "raw": "{\"qty\": 2}", "options": {"raw": {"language": "json"}}},
                    },
                },
                {"name": "Nested", "item": []},
            ],
        },
        {
            "name": "Login",
            "request": {
                "method": "post",
                "url": "https://shop/login",
                "body": {"mode": "urlencoded", "urlencoded": [{"key": "user", "value": "ada"}]},
            },
        },
        {
            "name": "Upload",
            "request": {
                "method": "PUT",
                "url": "https://shop/upload",
                "body": {"mode": "formdata", "formdata": [
                    {"key": "note", "value": "hi", "type": "text"},
                    {"key": "file", "type": "file", "src": ["/tmp/a.bin"]},
                ]},
            },
        },
        {"name": "Weird", "request": {"method": "TRACE", "url": "https://shop", "body": {"mode": "raw", "raw": "x"}}},
    ],
}


def parse():
    counter = iter(range(1000))
    return parse_postman_collection(json.dumps(SAMPLE), id_factory=lambda: f"id{next(counter)}")


def test_folders_become_nested_collections():
    bundle = parse()
    root = bundle.root
    assert root.name == "Shop" + IMPORTED_SUFFIX
    assert root.description == "Shop API"
    assert root.auth.type == "bearer" and root.auth.bearer.token == "abc"
    by_name = {c.name: c for c in bundle.collections}
    assert by_name["Orders"].parent_id == root.id
    assert by_name["Orders"].auth.type == "none"
    assert by_name["Nested"].parent_id == by_name["Orders"].id


def test_requests_land_in_their_folder_with_bodies():
    bundle = parse()
    by_name = {r.name: r for r in bundle.requests}
    orders = next(c for c in bundle.collections if c.name == "Orders")

    create = by_name["Create order"]
    assert create.collection_id == orders.id
    assert create.url == "{{base}}/orders"
    assert create.headers == {"X-Trace": "1"}
    assert create.body == JsonBody(value={"qty": 2})

    login = by_name["Login"]
    assert login.method == "POST"
    assert login.collection_id == bundle.root.id
    assert isinstance(login.body, UrlEncodedBody) and login.body.fields == {"user": "ada"}

    upload = by_name["Upload"]
    assert isinstance(upload.body, FormDataBody)
    assert upload.body.fields["note"].value == "hi"
    assert upload.body.fields["file"].path == "/tmp/a.bin"

    weird = by_name["Weird"]
    assert weird.method == "GET"
    assert isinstance(weird.body, RawBody) and weird.body.content == "x"


@pytest.mark.parametrize("payload", ["", "   ", "{not json", "[]", '{"info": {}}'])
def test_rejects_unusable_input(payload):
    with pytest.raises(ValueError):
        parse_postman_collection(payload)


def test_basic_auth_accepts_legacy_dict_form():
    auth = convert_auth({"type": "basic", "basic": {"username": "u", "password": "p"}})
    assert (auth.basic.username, auth.basic.password) == ("u", "p")
    assert convert_auth({"type": "oauth2"}) is None
