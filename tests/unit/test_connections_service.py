import asyncio
from uuid import uuid4

import pytest

from nearbyconnect.domain.chat import service as chat_service
from nearbyconnect.domain.connections import service
from nearbyconnect.domain.connections.models import Decision, RequestStatus
from nearbyconnect.domain.errors import (
    AlreadyConnected,
    AlreadyRequested,
    AlreadyResolved,
    AuthorizationError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from nearbyconnect.infra.rate_limit import RateLimitExceeded
from nearbyconnect.settings import settings


@pytest.mark.asyncio
async def test_create_request_stores_pending_and_notifies_receiver(make_user, store, published):
    alice = await make_user("Alice")
    bob = await make_user("Bob")

    request = await service.create_request(alice, bob.id)

    assert request.status is RequestStatus.PENDING
    assert request.sender_id == alice.id and request.receiver_id == bob.id

    notes = await store.list_notifications(bob.id, limit=10)
    assert len(notes) == 1
    note = notes[0]
    assert note.type.value == "connection_request"
    assert note.title == "New Connection Request"
    assert note.body == "Alice wants to connect with you"
    assert note.data == {
        "connection_request_id": request.id,
        "sender_id": alice.id,
        "sender_name": "Alice",
    }

    [new_request] = published.of("request:new")
    assert new_request["room"] == f"requests:{bob.id}"
    assert new_request["payload"]["id"] == request.id
    [pushed] = published.of("notification:new")
    assert pushed["room"] == f"notifications:{bob.id}"


@pytest.mark.asyncio
async def test_duplicate_request_is_rejected_without_side_effects(make_user, store):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    await service.create_request(alice, bob.id)

    with pytest.raises(AlreadyRequested) as excinfo:
        await service.create_request(alice, bob.id)
    assert excinfo.value.reason == "already_requested"
    assert len(await store.list_outgoing(alice.id)) == 1
    assert await store.count_unread_notifications(bob.id) == 1


@pytest.mark.asyncio
async def test_reverse_direction_is_a_separate_request(make_user):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    await service.create_request(alice, bob.id)

    reverse = await service.create_request(bob, alice.id)
    assert reverse.sender_id == bob.id


@pytest.mark.asyncio
async def test_concurrent_duplicates_store_one_request(make_user, store):
    alice = await make_user("Alice")
    bob = await make_user("Bob")

    results = await asyncio.gather(
        service.create_request(alice, bob.id),
        service.create_request(alice, bob.id),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, AlreadyRequested)) == 1
    assert len(await store.list_incoming(bob.id)) == 1


@pytest.mark.asyncio
async def test_self_request_is_invalid(make_user):
    alice = await make_user("Alice")
    with pytest.raises(ValidationError) as excinfo:
        await service.create_request(alice, alice.id)
    assert excinfo.value.reason == "self_request"


@pytest.mark.asyncio
async def test_request_to_unknown_user_is_not_found(make_user):
    alice = await make_user("Alice")
    with pytest.raises(NotFoundError) as excinfo:
        await service.create_request(alice, str(uuid4()))
    assert excinfo.value.reason == "receiver_not_found"


@pytest.mark.asyncio
async def test_malformed_receiver_id_is_invalid(make_user):
    alice = await make_user("Alice")
    with pytest.raises(ValidationError):
        await service.create_request(alice, "not-a-uuid")


@pytest.mark.asyncio
async def test_accept_creates_canonical_connection_and_notifies_sender(make_user, store, published):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    request = await service.create_request(alice, bob.id)

    resolution = await service.resolve_request(bob, request.id, "accept")

    assert resolution.changed is True
    assert resolution.request.status is RequestStatus.ACCEPTED
    connection = resolution.connection
    assert connection is not None
    assert connection.user_id_1 < connection.user_id_2
    assert set(connection.participants()) == {alice.id, bob.id}

    [accepted] = [n for n in await store.list_notifications(alice.id, limit=10)]
    assert accepted.type.value == "connection_accepted"
    assert accepted.title == "Connection Accepted"
    assert accepted.body == "Bob accepted your connection request"
    assert accepted.data["receiver_id"] == bob.id
    assert accepted.data["receiver_name"] == "Bob"

    rooms = {event["room"] for event in published.of("request:update")}
    assert rooms == {f"requests:{alice.id}", f"requests:{bob.id}"}
    payload = published.of("request:update")[0]["payload"]
    assert payload["status"] == "accepted"
    assert payload["connection_id"] == connection.id


@pytest.mark.asyncio
async def test_repeated_accept_is_a_noop(make_user, store):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    request = await service.create_request(alice, bob.id)

    first = await service.resolve_request(bob, request.id, Decision.ACCEPT)
    second = await service.resolve_request(bob, request.id, Decision.ACCEPT)

    assert second.changed is False
    assert second.connection is not None and second.connection.id == first.connection.id
    assert len(await store.list_connections(alice.id)) == 1
    assert await store.count_unread_notifications(alice.id) == 1


@pytest.mark.asyncio
async def test_concurrent_accepts_create_one_connection(make_user, store):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    request = await service.create_request(alice, bob.id)

    results = await asyncio.gather(
        service.resolve_request(bob, request.id, "accept"),
        service.resolve_request(bob, request.id, "accept"),
    )

    assert sorted(r.changed for r in results) == [False, True]
    assert len(await store.list_connections(bob.id)) == 1


@pytest.mark.asyncio
async def test_reject_then_accept_is_already_resolved(make_user, store):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    request = await service.create_request(alice, bob.id)

    rejected = await service.resolve_request(bob, request.id, "reject")
    assert rejected.request.status is RequestStatus.REJECTED
    assert rejected.connection is None

    with pytest.raises(AlreadyResolved):
        await service.resolve_request(bob, request.id, "accept")
    assert await store.find_connection_between(alice.id, bob.id) is None
    # Rejection does not notify the sender
    assert await store.count_unread_notifications(alice.id) == 0


@pytest.mark.asyncio
async def test_rejected_request_cannot_be_resent(make_user):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    request = await service.create_request(alice, bob.id)
    await service.resolve_request(bob, request.id, "reject")

    with pytest.raises(AlreadyRequested):
        await service.create_request(alice, bob.id)


@pytest.mark.asyncio
async def test_only_receiver_may_resolve(make_user):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    carol = await make_user("Carol")
    request = await service.create_request(alice, bob.id)

    with pytest.raises(AuthorizationError):
        await service.resolve_request(alice, request.id, "accept")
    with pytest.raises(NotFoundError) as foreign:
        await service.resolve_request(carol, request.id, "reject")
    with pytest.raises(NotFoundError) as unknown:
        await service.resolve_request(carol, str(uuid4()), "reject")
    assert foreign.value.reason == unknown.value.reason


@pytest.mark.asyncio
async def test_unknown_request_and_decision(make_user):
    bob = await make_user("Bob")
    with pytest.raises(NotFoundError):
        await service.resolve_request(bob, str(uuid4()), "accept")
    with pytest.raises(ValueError):
        await service.resolve_request(bob, str(uuid4()), "maybe")


@pytest.mark.asyncio
async def test_request_between_connected_users_is_already_connected(make_user):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    request = await service.create_request(alice, bob.id)
    await service.resolve_request(bob, request.id, "accept")

    with pytest.raises(AlreadyConnected):
        await service.create_request(bob, alice.id)


@pytest.mark.asyncio
async def test_incoming_lists_pending_only_and_outgoing_lists_all(make_user):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    carol = await make_user("Carol")
    to_bob = await service.create_request(alice, bob.id)
    await service.create_request(carol, bob.id)
    await service.resolve_request(bob, to_bob.id, "reject")

    incoming = await service.list_incoming(bob)
    assert [r.sender_id for r in incoming] == [carol.id]
    outgoing = await service.list_outgoing(alice)
    assert [(r.receiver_id, r.status) for r in outgoing] == [(bob.id, RequestStatus.REJECTED)]


@pytest.mark.asyncio
async def test_list_connections_reports_other_user_and_unread(make_user):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    request = await service.create_request(alice, bob.id)
    connection = (await service.resolve_request(bob, request.id, "accept")).connection

    await chat_service.post_message(alice, connection.id, "hi bob")
    await chat_service.post_message(alice, connection.id, "are you there?")

    [summary] = await service.list_connections(bob)
    assert str(summary.other_user.id) == alice.id
    assert summary.other_user.full_name == "Alice"
    assert summary.unread_count == 2
    [mine] = await service.list_connections(alice)
    assert mine.unread_count == 0


@pytest.mark.asyncio
async def test_get_connection_hides_from_outsiders(make_user):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    carol = await make_user("Carol")
    request = await service.create_request(alice, bob.id)
    connection = (await service.resolve_request(bob, request.id, "accept")).connection

    assert (await service.get_connection(alice, connection.id)).id == connection.id
    with pytest.raises(AuthorizationError):
        await service.get_connection(carol, connection.id)
    with pytest.raises(NotFoundError):
        await service.get_connection(alice, "bogus")


@pytest.mark.asyncio
async def test_request_rate_limit(make_user, monkeypatch):
    monkeypatch.setattr(settings, "connection_requests_per_minute", 1)
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    carol = await make_user("Carol")

    await service.create_request(alice, bob.id)
    with pytest.raises(RateLimitExceeded):
        await service.create_request(alice, carol.id)


@pytest.mark.asyncio
async def test_request_during_redis_outage_is_transient(make_user, unreachable_redis, store):
    alice = await make_user("Alice")
    bob = await make_user("Bob")

    with pytest.raises(TransientError):
        await service.create_request(alice, bob.id)
    assert await service.list_incoming(bob) == []
