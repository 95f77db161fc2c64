from types import SimpleNamespace

import pytest

from nearbyconnect.domain import access
from nearbyconnect.domain.errors import AuthorizationError, NotFoundError

ALICE = access.Actor.user("alice")
BOB = access.Actor.user("bob")
CAROL = access.Actor.user("carol")


def test_profile_read_allows_available_or_owner():
    hidden = {"id": "alice", "is_available": False}
    shown = {"id": "alice", "is_available": True}

    assert access.is_allowed(ALICE, "profile", "read", hidden)
    assert not access.is_allowed(BOB, "profile", "read", hidden)
    assert access.is_allowed(BOB, "profile", "read", shown)


def test_profile_and_location_writes_are_owner_only():
    assert access.is_allowed(ALICE, "profile", "update", {"id": "alice"})
    assert not access.is_allowed(BOB, "profile", "update", {"id": "alice"})
    assert access.is_allowed(ALICE, "location", "insert", {"user_id": "alice"})
    assert not access.is_allowed(BOB, "location", "read", {"user_id": "alice"})


def test_connection_request_rules():
    row = SimpleNamespace(sender_id="alice", receiver_id="bob")

    assert access.is_allowed(ALICE, "connection_request", "insert", row)
    assert not access.is_allowed(BOB, "connection_request", "insert", row)
    assert access.is_allowed(BOB, "connection_request", "update", row)
    assert not access.is_allowed(ALICE, "connection_request", "update", row)
    assert access.is_allowed(ALICE, "connection_request", "read", row)
    assert not access.is_allowed(CAROL, "connection_request", "read", row)


def test_connections_are_created_by_system_only():
    row = {"user_id_1": "alice", "user_id_2": "bob"}

    assert access.is_allowed(ALICE, "connection", "read", row)
    assert not access.is_allowed(CAROL, "connection", "read", row)
    assert not access.is_allowed(ALICE, "connection", "insert", row)
    assert not access.is_allowed(ALICE, "connection", "update", row)
    assert access.is_allowed(access.SYSTEM, "connection", "insert", row)
    assert not access.is_allowed(access.SYSTEM, "connection", "read", row)


def test_message_insert_requires_participant_sender():
    row = {"user_id_1": "alice", "user_id_2": "bob", "sender_id": "alice"}

    assert access.is_allowed(ALICE, "message", "insert", row)
    assert not access.is_allowed(BOB, "message", "insert", row)
    assert not access.is_allowed(CAROL, "message", "insert", {**row, "sender_id": "carol"})
    assert access.is_allowed(BOB, "message", "update", row)


def test_notification_rules():
    row = {"user_id": "bob"}

    assert access.is_allowed(BOB, "notification", "read", row)
    assert access.is_allowed(BOB, "notification", "update", row)
    assert not access.is_allowed(ALICE, "notification", "update", row)
    assert not access.is_allowed(BOB, "notification", "insert", row)
    assert access.is_allowed(access.SYSTEM, "notification", "insert", row)


def test_anonymous_actor_is_denied_everywhere():
    assert not access.ANONYMOUS.authenticated
    assert not access.is_allowed(access.ANONYMOUS, "location", "read", {"user_id": None})
    assert not access.is_allowed(access.ANONYMOUS, "profile", "update", {"id": None})


def test_authorize_raises_generic_reason():
    with pytest.raises(AuthorizationError) as excinfo:
        access.authorize(CAROL, "notification", "read", {"user_id": "bob", "title": "secret"})
    assert excinfo.value.reason == "forbidden"
    assert "secret" not in str(excinfo.value)


def test_filter_visible_keeps_only_readable_rows():
    rows = [{"user_id": "alice", "n": 1}, {"user_id": "bob", "n": 2}, {"user_id": "alice", "n": 3}]
    visible = access.filter_visible(ALICE, "notification", rows)
    assert [row["n"] for row in visible] == [1, 3]


def test_authorize_visible_hides_rows_the_actor_cannot_read():
    row = SimpleNamespace(sender_id="alice", receiver_id="bob")

    access.authorize_visible(BOB, "connection_request", "update", row)
    with pytest.raises(AuthorizationError):
        access.authorize_visible(ALICE, "connection_request", "update", row)
    with pytest.raises(NotFoundError):
        access.authorize_visible(CAROL, "connection_request", "update", row)


def test_location_delete_is_owner_only():
    assert access.is_allowed(ALICE, "location", "delete", {"user_id": "alice"})
    assert not access.is_allowed(BOB, "location", "delete", {"user_id": "alice"})
    assert not access.is_allowed(access.SYSTEM, "location", "delete", {"user_id": "alice"})
