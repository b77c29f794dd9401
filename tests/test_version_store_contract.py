"""
Contract tests run against both VersionStore implementations (see the
parametrised ``make_store`` fixture in conftest).
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from versioned_policy.core.contracts import VersionStore
from versioned_policy.core.errors import ConflictError, NotFoundError

SCOPE = "fh-001"


def _bump(field: str, value):
    def mutator(payload):
        payload[field] = value
        return payload

    return mutator


def _seed_lineage(store, clock, versions: int = 3, key: str = "k-1"):
    store.create(SCOPE, {"n": 1}, "alice", business_key=key)
    for n in range(2, versions + 1):
        clock.advance(minutes=10)
        store.supersede(SCOPE, key, _bump("n", n), f"user-{n}", reason=f"step {n}")
    return store.find_lineage(SCOPE, key)


def test_both_stores_satisfy_protocol(store):
    assert isinstance(store, VersionStore)


def test_create_opens_version_one(store, clock):
    rec = store.create(SCOPE, {"status": "pending"}, "alice")
    assert rec.version == 1
    assert rec.is_current is True
    assert rec.valid_to is None
    assert rec.valid_from == clock.now
    assert rec.business_key  # allocated
    assert rec.created_by == rec.lineage_created_by == "alice"
    assert rec.created_at == rec.lineage_created_at == clock.now


def test_create_then_find_current_round_trips(store):
    created = store.create(SCOPE, {"amount": "250.00", "tags": ["a", "b"]}, "alice", reason="initial")
    found = store.find_current(SCOPE, created.business_key)
    assert found == created


def test_create_with_existing_key_conflicts(store):
    store.create(SCOPE, {}, "alice", business_key="dup")
    with pytest.raises(ConflictError):
        store.create(SCOPE, {}, "bob", business_key="dup")


def test_same_key_in_other_scope_is_independent(store):
    store.create(SCOPE, {"v": "a"}, "alice", business_key="shared")
    other = store.create("fh-002", {"v": "b"}, "alice", business_key="shared")
    assert other.version == 1
    assert store.find_current(SCOPE, "shared").payload == {"v": "a"}


def test_kinds_partition_lineages(make_store):
    payments = make_store("payment")
    invitations = make_store("invitation")
    payments.create(SCOPE, {"kind": "payment"}, "alice", business_key="same-key")
    invitations.create(SCOPE, {"kind": "invitation"}, "alice", business_key="same-key")
    assert payments.find_current(SCOPE, "same-key").payload == {"kind": "payment"}
    assert invitations.find_current(SCOPE, "same-key").payload == {"kind": "invitation"}


def test_supersede_chain_keeps_invariants(store, clock):
    lineage = _seed_lineage(store, clock, versions=4)

    # contiguous versions starting at 1
    assert [r.version for r in lineage] == [1, 2, 3, 4]
    # exactly one current row, and it is the highest version
    current = [r for r in lineage if r.is_current]
    assert len(current) == 1 and current[0].version == 4
    # no temporal gaps or overlaps
    for older, newer in zip(lineage, lineage[1:]):
        assert older.valid_to == newer.valid_from
        assert older.is_current is False
    # lineage audit repeated, version audit per row
    assert {r.lineage_created_by for r in lineage} == {"alice"}
    assert {r.lineage_created_at for r in lineage} == {lineage[0].created_at}
    assert [r.created_by for r in lineage] == ["alice", "user-2", "user-3", "user-4"]
    assert [r.reason for r in lineage] == [None, "step 2", "step 3", "step 4"]
    # unchanged fields carried forward, changes applied
    assert [r.payload["n"] for r in lineage] == [1, 2, 3, 4]


def test_supersede_unknown_key_is_not_found(store):
    with pytest.raises(NotFoundError):
        store.supersede(SCOPE, "missing", _bump("x", 1), "alice")


def test_supersede_with_stale_expected_version_conflicts(store, clock):
    rec = store.create(SCOPE, {"n": 1}, "alice")
    observed = store.find_current(SCOPE, rec.business_key).version

    # another writer gets there first
    clock.advance(seconds=1)
    store.supersede(SCOPE, rec.business_key, _bump("n", 2), "bob", expected_version=observed)

    with pytest.raises(ConflictError) as excinfo:
        store.supersede(SCOPE, rec.business_key, _bump("n", 99), "carol", expected_version=observed)
    assert excinfo.value.details["expected_version"] == 1
    assert excinfo.value.details["current_version"] == 2

    # the loser's change was not applied, the winner's was kept
    lineage = store.find_lineage(SCOPE, rec.business_key)
    assert [r.version for r in lineage] == [1, 2]
    assert lineage[-1].payload == {"n": 2}


def test_mutator_must_return_dict(store):
    rec = store.create(SCOPE, {"n": 1}, "alice")
    with pytest.raises(TypeError):
        store.supersede(SCOPE, rec.business_key, lambda p: None, "bob")
    assert len(store.find_lineage(SCOPE, rec.business_key)) == 1


def test_failing_mutator_leaves_no_partial_state(store):
    rec = store.create(SCOPE, {"n": 1}, "alice")

    def boom(payload):
        raise ValueError("bad transition")

    with pytest.raises(ValueError):
        store.supersede(SCOPE, rec.business_key, boom, "bob")
    current = store.find_current(SCOPE, rec.business_key)
    assert current.version == 1 and current.is_current


def test_find_lineage_is_repeatable(store, clock):
    _seed_lineage(store, clock)
    first = store.find_lineage(SCOPE, "k-1")
    second = store.find_lineage(SCOPE, "k-1")
    assert first == second


def test_find_lineage_unknown_key(store):
    with pytest.raises(NotFoundError):
        store.find_lineage(SCOPE, "nope")


def test_find_current_unknown_key(store):
    with pytest.raises(NotFoundError):
        store.find_current(SCOPE, "nope")


def test_find_as_of_inside_second_version(store, clock):
    lineage = _seed_lineage(store, clock, versions=3)
    v1, v2, v3 = lineage
    assert v1.valid_to == v2.valid_from and v2.valid_to == v3.valid_from

    inside_v2 = v2.valid_from + timedelta(minutes=5)
    assert store.find_as_of(SCOPE, "k-1", inside_v2).version == 2
    # intervals are half-open: the boundary belongs to the newer version
    assert store.find_as_of(SCOPE, "k-1", v2.valid_from).version == 2
    assert store.find_as_of(SCOPE, "k-1", v3.valid_from).version == 3
    assert store.find_as_of(SCOPE, "k-1", v3.valid_from + timedelta(days=365)).version == 3


def test_find_as_of_before_birth(store, clock):
    lineage = _seed_lineage(store, clock, versions=2)
    with pytest.raises(NotFoundError):
        store.find_as_of(SCOPE, "k-1", lineage[0].valid_from - timedelta(seconds=1))
    with pytest.raises(NotFoundError):
        store.find_as_of(SCOPE, "unknown", lineage[0].valid_from)


def test_find_as_of_accepts_naive_timestamps_as_utc(store, clock):
    rec = store.create(SCOPE, {}, "alice")
    naive = (clock.now + timedelta(minutes=1)).replace(tzinfo=None)
    assert store.find_as_of(SCOPE, rec.business_key, naive).version == 1


def test_list_current_scoped_and_ordered(store, clock):
    a = store.create(SCOPE, {"name": "a"}, "alice")
    clock.advance(minutes=1)
    b = store.create(SCOPE, {"name": "b"}, "alice")
    store.create("fh-002", {"name": "other"}, "alice")
    clock.advance(minutes=1)
    store.supersede(SCOPE, a.business_key, _bump("name", "a2"), "bob")

    current = store.list_current(SCOPE)
    assert [r.business_key for r in current] == [a.business_key, b.business_key]
    assert [r.payload["name"] for r in current] == ["a2", "b"]
    assert all(r.is_current for r in current)
    assert store.list_current("fh-empty") == ()


def test_returned_payload_is_detached(store):
    rec = store.create(SCOPE, {"items": [1, 2]}, "alice")
    rec.payload["items"].append(3)
    assert store.find_current(SCOPE, rec.business_key).payload == {"items": [1, 2]}


def test_mutator_sees_a_private_copy(store):
    rec = store.create(SCOPE, {"items": [1]}, "alice")
    seen = {}

    def mutator(payload):
        seen["payload"] = payload
        payload["items"].append(2)
        return payload

    store.supersede(SCOPE, rec.business_key, mutator, "bob")
    seen["payload"]["items"].append(99)
    lineage = store.find_lineage(SCOPE, rec.business_key)
    assert lineage[0].payload == {"items": [1]}
    assert lineage[1].payload == {"items": [1, 2]}


def test_lagging_clock_never_opens_a_negative_interval(store, clock):
    rec = store.create(SCOPE, {"n": 1}, "alice")
    clock.advance(minutes=-5)
    store.supersede(SCOPE, rec.business_key, _bump("n", 2), "bob")
    v1, v2 = store.find_lineage(SCOPE, rec.business_key)
    assert v1.valid_to == v2.valid_from == v1.valid_from


@pytest.mark.parametrize("scope_key", ["", "   "])
def test_blank_scope_key_rejected(store, scope_key):
    with pytest.raises(ValueError):
        store.create(scope_key, {}, "alice")
