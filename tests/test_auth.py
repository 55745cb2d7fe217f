import base64

from reqforge.auth import collection_auth_headers, generate_auth_headers, merge_headers, resolve_request_headers
from reqforge.models import AuthConfig, BasicAuth, BearerAuth, Collection, HttpRequest


def bearer(token):
    return AuthConfig(type="bearer", bearer=BearerAuth(token=token))


def test_basic_header_is_base64_of_credentials():
    headers = generate_auth_headers(AuthConfig(type="basic", basic=BasicAuth(username="u", password="p")))
    assert headers == {"Authorization": "Basic " + base64.b64encode(b"u:p").decode()}


def test_empty_fields_yield_no_header():
    assert generate_auth_headers(AuthConfig(type="basic", basic=BasicAuth(username="u"))) == {}
    assert generate_auth_headers(bearer("")) == {}
    assert generate_auth_headers(AuthConfig(type="none")) == {}
    assert generate_auth_headers(None) == {}


def test_request_header_overrides_inherited_auth():
    """Bearer on A is inherited through B unless the request sets Authorization"""
    a = Collection(id="a", name="A", auth=bearer("T"))
    b = Collection(id="b", name="B", parent_id="a")
    explicit = HttpRequest(collection_id="b", headers={"Authorization": "X"})
    inherited = HttpRequest(collection_id="b")
    assert resolve_request_headers(explicit, [a, b]) == {"Authorization": "X"}
    assert resolve_request_headers(inherited, [a, b]) == {"Authorization": "Bearer T"}


def test_nearest_ancestor_wins():
    a = Collection(id="a", name="A", auth=bearer("outer"))
    b = Collection(id="b", name="B", parent_id="a", auth=bearer("inner"))
    c = Collection(id="c", name="C", parent_id="b")
    assert collection_auth_headers("c", [a, b, c]) == {"Authorization": "Bearer inner"}


def test_unusable_auth_falls_through_to_parent():
    a = Collection(id="a", name="A", auth=bearer("T"))
    b = Collection(id="b", name="B", parent_id="a", auth=AuthConfig(type="basic", basic=BasicAuth(username="only")))
    assert collection_auth_headers("b", [a, b]) == {"Authorization": "Bearer T"}


def test_no_collection_or_unknown_collection():
    assert collection_auth_headers(None, []) == {}
    assert collection_auth_headers("ghost", []) == {}


def test_corrupted_cycle_terminates():
    a = Collection(id="a", name="A", parent_id="b")
    b = Collection(id="b", name="B", parent_id="a")
    assert collection_auth_headers("a", {"a": a, "b": b}) == {}


def test_merge_is_case_sensitive():
    merged = merge_headers({"authorization": "mine"}, {"Authorization": "Bearer T"})
    assert merged == {"Authorization": "Bearer T", "authorization": "mine"}
