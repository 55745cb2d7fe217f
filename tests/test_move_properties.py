"""
Property-based tests for collection and request moves.

Random forests and random move sequences check that the tree never gains a
cycle, that rejected moves change nothing, and that moving a request away
and back restores the request-cache partition.
"""
import asyncio
from typing import Dict, List, Optional

from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import FakeBackend
from reqforge.config import Settings
from reqforge.errors import BackendError, CycleError
from reqforge.models import ROOT_ID, Collection
from reqforge.store import WorkspaceStore
from reqforge.tree import TreeIndex


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

@st.composite
def forest_shapes(draw: st.DrawFn) -> List[Optional[int]]:
    """Parent index per node; a node may only point at an earlier node, so the shape is a forest."""
    n = draw(st.integers(min_value=1, max_value=8))
    parents: List[Optional[int]] = []
    for i in range(n):
        parents.append(None if i == 0 else draw(st.one_of(st.none(), st.integers(0, i - 1))))
    return parents


# (moving node, target node or None for root, backend rejects the call)
collection_moves = st.lists(
    st.tuples(st.integers(0, 7), st.one_of(st.none(), st.integers(0, 7)), st.booleans()),
    max_size=15,
)


def parent_map(tree: TreeIndex) -> Dict[str, Optional[str]]:
    return {c.id: c.parent_id for c in tree.collections}


def assert_acyclic(tree: TreeIndex):
    lookup = tree.lookup
    for start, node in lookup.items():
        seen = set()
        while node.parent_id is not None:
            assert node.parent_id != start, f"{start} is its own ancestor"
            assert node.parent_id not in seen
            seen.add(node.parent_id)
            node = lookup[node.parent_id]


def seed_collections(backend: FakeBackend, parents: List[Optional[int]]) -> List[Collection]:
    cols: List[Collection] = []
    for i, p in enumerate(parents):
        cols.append(backend.add_collection(f"c{i}", parent=cols[p] if p is not None else None))
    return cols


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

@settings(max_examples=60, deadline=None)
@given(parents=forest_shapes(), moves=collection_moves)
def test_random_collection_moves_keep_forest_acyclic(parents, moves):
    """No sequence of moves makes a collection its own ancestor; rejected moves change nothing."""

    async def scenario():
        backend = FakeBackend()
        cols = seed_collections(backend, parents)
        store = WorkspaceStore(backend, Settings())
        await store.load_collections()
        for item, target, rejected in moves:
            moving = cols[item % len(cols)].id
            target_id = ROOT_ID if target is None else cols[target % len(cols)].id
            if rejected:
                backend.fail["move_collection"] = RuntimeError("rejected")
            else:
                backend.fail.pop("move_collection", None)
            before = parent_map(store.tree)
            try:
                await store.move_collection(moving, target_id)
            except (CycleError, BackendError):
                assert parent_map(store.tree) == before
            assert_acyclic(store.tree)
            assert parent_map(store.tree) == {c.id: c.parent_id for c in backend.collections}

    asyncio.run(scenario())


@settings(max_examples=60, deadline=None)
@given(parents=forest_shapes(), moves=st.lists(st.tuples(st.integers(0, 7), st.integers(0, 7)), max_size=15))
def test_reparenting_into_own_subtree_leaves_tree_unchanged(parents, moves):
    backend = FakeBackend()
    cols = seed_collections(backend, parents)
    tree = TreeIndex.from_collections(backend.collections)
    for item, target in moves:
        node = tree.get(cols[item % len(cols)].id)
        target_id = cols[target % len(cols)].id
        before = parent_map(tree)
        try:
            tree.upsert_collection(node.model_copy(update={"parent_id": target_id}))
        except CycleError:
            assert target_id in tree.descendant_ids(node.id)
            assert parent_map(tree) == before
        assert_acyclic(tree)


@settings(max_examples=60, deadline=None)
@given(
    n_collections=st.integers(min_value=1, max_value=4),
    placement=st.lists(st.one_of(st.none(), st.integers(0, 3)), min_size=1, max_size=6),
    trips=st.lists(st.tuples(st.integers(0, 5), st.one_of(st.none(), st.integers(0, 3))), min_size=1, max_size=8),
)
def test_request_move_there_and_back_restores_partition(n_collections, placement, trips):
    """Moving a request X -> Y -> X leaves every cached bucket as it was, and each request cached once."""

    async def scenario():
        backend = FakeBackend()
        cols = [backend.add_collection(f"c{i}") for i in range(n_collections)]
        requests = [
            backend.add_request(f"r{i}", cols[slot % n_collections] if slot is not None else None)
            for i, slot in enumerate(placement)
        ]
        store = WorkspaceStore(backend, Settings())
        await store.load_collections()
        await store.load_collection_requests(None)
        for c in cols:
            await store.load_collection_requests(c.id)

        def partition():
            return {k: {r.id for r in bucket} for k, bucket in store.tree.request_cache.items()}

        for req_index, target in trips:
            request = requests[req_index % len(requests)]
            home = store.tree.find_request(request.id).collection_id
            away = cols[target % n_collections].id if target is not None else ROOT_ID
            original = partition()

            await store.move_request(request.id, away)
            cached = [r.id for bucket in store.tree.request_cache.values() for r in bucket]
            assert sorted(cached) == sorted(r.id for r in requests)

            await store.move_request(request.id, home or ROOT_ID)
            assert partition() == original
            assert store.tree.find_request(request.id).collection_id == home

    asyncio.run(scenario())
