import json

import httpx
import pytest

from reqforge import http_engine
from reqforge.models import (
    FormDataBody,
    FormFileField,
    FormTextField,
    JsonBody,
    RawBody,
    SendRequestPayload,
    UrlEncodedBody,
)


def recording_client(status=200, body=b'{"id":1}', content_type="application/json"):
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(status, content=body, headers={"content-type": content_type})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), seen


def test_format_json_pretty_prints_and_rejects_garbage():
    assert http_engine.format_json('{"a":[1,2]}') == '{\n  "a": [\n    1,\n    2\n  ]\n}'
    with pytest.raises(ValueError, match="Invalid JSON"):
        http_engine.format_json("{nope")


def test_variables_and_path_params_are_applied():
    payload = SendRequestPayload(
        method="GET",
        url="{{base}}/users/:id",
        headers={"X-Env": "{{env}}"},
        path_params={"id": "42"},
    )
    kwargs = http_engine.build_request_kwargs(payload, {"base": "https://api.test", "env": "dev"})
    assert kwargs["url"] == "https://api.test/users/42"
    assert kwargs["headers"] == {"X-Env": "dev"}


def test_raw_body_sets_content_type_unless_present():
    payload = SendRequestPayload(method="POST", url="https://x", body=RawBody(content="<a/>", content_type="application/xml"))
    assert http_engine.build_request_kwargs(payload, {})["headers"]["Content-Type"] == "application/xml"
    payload = payload.model_copy(update={"headers": {"content-type": "text/xml"}})
    headers = http_engine.build_request_kwargs(payload, {})["headers"]
    assert headers == {"content-type": "text/xml"}


def test_form_file_must_exist(tmp_path):
    missing = SendRequestPayload(
        method="POST", url="https://x", body=FormDataBody(fields={"f": FormFileField(path=str(tmp_path / "none.bin"))})
    )
    with pytest.raises(FileNotFoundError):
        http_engine.build_request_kwargs(missing, {})


@pytest.mark.asyncio
async def test_execute_json_body_and_measures_response():
    client, seen = recording_client()
    payload = SendRequestPayload(method="POST", url="https://api.test/{{path}}", body=JsonBody(value={"name": "{{who}}"}))
    response = await http_engine.execute(payload, {"path": "users", "who": "ada"}, client=client)
    assert str(seen[0].url) == "https://api.test/users"
    assert json.loads(seen[0].content) == {"name": "ada"}
    assert response.status == 200
    assert response.size == len(b'{"id":1}')
    assert response.formatted_body == '{\n  "id": 1\n}'
    assert response.content_type == "application/json"
    await client.aclose()


@pytest.mark.asyncio
async def test_execute_form_bodies(tmp_path):
    upload = tmp_path / "note.txt"
    upload.write_text("hello")
    client, seen = recording_client(body=b"ok", content_type="text/plain")

    await http_engine.execute(
        SendRequestPayload(method="POST", url="https://x", body=UrlEncodedBody(fields={"a": "1", "b": "two"})),
        client=client,
    )
    assert seen[0].content == b"a=1&b=two"

    response = await http_engine.execute(
        SendRequestPayload(
            method="POST",
            url="https://x",
            body=FormDataBody(fields={"t": FormTextField(value="v"), "f": FormFileField(path=str(upload))}),
        ),
        client=client,
    )
    assert seen[1].headers["content-type"].startswith("multipart/form-data")
    assert b"hello" in seen[1].content
    assert response.formatted_body is None
    await client.aclose()
