from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from nearbyconnect.domain.errors import NotFoundError
from nearbyconnect.domain.notifications import service
from nearbyconnect.domain.notifications.models import Notification, NotificationType
from nearbyconnect.settings import settings


def _note(user_id: str, *, minutes: int = 0, read: bool = False) -> Notification:
    return Notification(
        id=str(uuid4()),
        user_id=user_id,
        type=NotificationType.CONNECTION_REQUEST,
        title="New Connection Request",
        body="Someone wants to connect with you",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
        is_read=read,
    )


def _seed(store, notifications):
    # Notifications reach the store through the transactional request paths
    for note in notifications:
        store._notifications[note.id] = note


@pytest.mark.asyncio
async def test_list_is_newest_first_and_scoped_to_recipient(make_user, store):
    bob = await make_user("Bob")
    carol = await make_user("Carol")
    _seed(store, [_note(bob.id, minutes=1), _note(bob.id, minutes=5), _note(carol.id, minutes=3)])

    rows = await service.list_notifications(bob)

    assert [n.user_id for n in rows] == [bob.id, bob.id]
    assert rows[0].created_at > rows[1].created_at


@pytest.mark.asyncio
async def test_list_limit_is_clamped(make_user, store, monkeypatch):
    monkeypatch.setattr(settings, "notifications_page_max", 5)
    bob = await make_user("Bob")
    _seed(store, [_note(bob.id, minutes=i) for i in range(30)])

    assert len(await service.list_notifications(bob)) == 5
    assert len(await service.list_notifications(bob, limit=3)) == 3
    assert len(await service.list_notifications(bob, limit=0)) == 1
    assert len(await service.list_notifications(bob, limit=500)) == 5


@pytest.mark.asyncio
async def test_default_page_size(make_user, store):
    bob = await make_user("Bob")
    _seed(store, [_note(bob.id, minutes=i) for i in range(30)])

    assert len(await service.list_notifications(bob)) == 20


@pytest.mark.asyncio
async def test_mark_read_is_idempotent(make_user, store, published):
    bob = await make_user("Bob")
    note = _note(bob.id)
    _seed(store, [note])

    first = await service.mark_read(bob, note.id)
    second = await service.mark_read(bob, note.id)

    assert first.is_read and second.is_read
    assert await service.count_unread(bob) == 0
    [update] = published.of("notification:update")
    assert update["room"] == f"notifications:{bob.id}"
    assert update["payload"]["is_read"] is True


@pytest.mark.asyncio
async def test_someone_elses_notification_looks_missing(make_user, store):
    bob = await make_user("Bob")
    carol = await make_user("Carol")
    note = _note(bob.id)
    _seed(store, [note])

    with pytest.raises(NotFoundError) as foreign:
        await service.mark_read(carol, note.id)
    with pytest.raises(NotFoundError) as unknown:
        await service.mark_read(carol, str(uuid4()))
    assert foreign.value.reason == unknown.value.reason
    assert await service.count_unread(bob) == 1


@pytest.mark.asyncio
async def test_mark_read_unknown_is_not_found(make_user):
    bob = await make_user("Bob")
    with pytest.raises(NotFoundError):
        await service.mark_read(bob, str(uuid4()))


@pytest.mark.asyncio
async def test_mark_all_read_touches_only_unread_rows(make_user, store, published):
    bob = await make_user("Bob")
    carol = await make_user("Carol")
    _seed(
        store,
        [_note(bob.id), _note(bob.id, minutes=1), _note(bob.id, minutes=2, read=True), _note(carol.id)],
    )

    assert await service.count_unread(bob) == 2
    assert await service.mark_all_read(bob) == 2
    assert await service.count_unread(bob) == 0
    assert await service.count_unread(carol) == 1
    assert await service.mark_all_read(bob) == 0
    assert len(published.of("notification:update")) == 2


def test_builders_fill_fixed_titles():
    from nearbyconnect.domain.connections.models import ConnectionRequest, RequestStatus
    from nearbyconnect.domain.profiles.models import Profile

    now = datetime.now(timezone.utc)
    request = ConnectionRequest(
        id=str(uuid4()),
        sender_id=str(uuid4()),
        receiver_id=str(uuid4()),
        status=RequestStatus.PENDING,
        created_at=now,
        updated_at=now,
    )
    sender = Profile(id=request.sender_id, username="ada", full_name="Ada", created_at=now, updated_at=now)

    note = service.build_request_notification(request, sender, at=now)

    assert note.user_id == request.receiver_id
    assert note.type is NotificationType.CONNECTION_REQUEST
    assert note.body == "Ada wants to connect with you"
    assert note.is_read is False
