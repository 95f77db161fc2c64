from uuid import uuid4

import pytest


def _h(user) -> dict:
	return {"X-User-Id": user.id}


async def _connect(api_client, alice, bob) -> str:
	created = await api_client.post("/connections/requests", json={"receiver_id": bob.id}, headers=_h(alice))
	assert created.status_code == 201
	accepted = await api_client.post(f"/connections/requests/{created.json()['id']}/accept", headers=_h(bob))
	assert accepted.status_code == 200
	return accepted.json()["connection"]["id"]


@pytest.mark.asyncio
async def test_request_accept_and_list_flow(api_client, make_user):
	alice = await make_user("Alice")
	bob = await make_user("Bob")

	created = await api_client.post("/connections/requests", json={"receiver_id": bob.id}, headers=_h(alice))
	assert created.status_code == 201
	assert created.json()["status"] == "pending"

	incoming = await api_client.get("/connections/requests/incoming", headers=_h(bob))
	assert [r["id"] for r in incoming.json()] == [created.json()["id"]]

	accepted = await api_client.post(f"/connections/requests/{created.json()['id']}/accept", headers=_h(bob))
	assert accepted.json()["request"]["status"] == "accepted"
	assert accepted.json()["connection"] is not None

	connections = await api_client.get("/connections", headers=_h(alice))
	[summary] = connections.json()
	assert summary["other_user"]["id"] == bob.id
	assert summary["unread_count"] == 0


@pytest.mark.asyncio
async def test_duplicate_request_is_409_with_request_id(api_client, make_user):
	alice = await make_user("Alice")
	bob = await make_user("Bob")
	await api_client.post("/connections/requests", json={"receiver_id": bob.id}, headers=_h(alice))

	again = await api_client.post("/connections/requests", json={"receiver_id": bob.id}, headers=_h(alice))

	assert again.status_code == 409
	assert again.json()["detail"] == "already_requested"
	assert again.json()["request_id"] == again.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_self_request_is_422(api_client, make_user):
	alice = await make_user("Alice")
	response = await api_client.post("/connections/requests", json={"receiver_id": alice.id}, headers=_h(alice))
	assert response.status_code == 422
	assert response.json()["detail"] == "self_request"


@pytest.mark.asyncio
async def test_sender_cannot_accept_own_request(api_client, make_user):
	alice = await make_user("Alice")
	bob = await make_user("Bob")
	created = await api_client.post("/connections/requests", json={"receiver_id": bob.id}, headers=_h(alice))

	response = await api_client.post(f"/connections/requests/{created.json()['id']}/accept", headers=_h(alice))

	assert response.status_code == 403
	assert response.json()["detail"] == "forbidden"


@pytest.mark.asyncio
async def test_reject_then_accept_is_409(api_client, make_user):
	alice = await make_user("Alice")
	bob = await make_user("Bob")
	created = await api_client.post("/connections/requests", json={"receiver_id": bob.id}, headers=_h(alice))
	request_id = created.json()["id"]

	rejected = await api_client.post(f"/connections/requests/{request_id}/reject", headers=_h(bob))
	assert rejected.status_code == 200
	assert rejected.json()["connection"] is None

	late = await api_client.post(f"/connections/requests/{request_id}/accept", headers=_h(bob))
	assert late.status_code == 409
	assert late.json()["detail"] == "already_resolved"


@pytest.mark.asyncio
async def test_chat_flow(api_client, make_user):
	alice = await make_user("Alice")
	bob = await make_user("Bob")
	connection_id = await _connect(api_client, alice, bob)

	sent = await api_client.post(
		f"/connections/{connection_id}/messages",
		json={"content": "hello", "client_msg_id": "c-1"},
		headers=_h(alice),
	)
	assert sent.status_code == 201
	retry = await api_client.post(
		f"/connections/{connection_id}/messages",
		json={"content": "hello", "client_msg_id": "c-1"},
		headers=_h(alice),
	)
	assert retry.json()["id"] == sent.json()["id"]

	unread = await api_client.get(f"/connections/{connection_id}/messages/unread", headers=_h(bob))
	assert unread.json()["unread"] == 1

	listed = await api_client.get(f"/connections/{connection_id}/messages", headers=_h(bob))
	assert [m["content"] for m in listed.json()["items"]] == ["hello"]

	read = await api_client.post(f"/connections/{connection_id}/messages/read", headers=_h(bob))
	assert read.json() == {"updated": 1}

	since = await api_client.get(
		f"/connections/{connection_id}/messages",
		params={"since": sent.json()["id"]},
		headers=_h(bob),
	)
	assert since.json()["items"] == []


@pytest.mark.asyncio
async def test_chat_outsider_is_403(api_client, make_user):
	alice = await make_user("Alice")
	bob = await make_user("Bob")
	carol = await make_user("Carol")
	connection_id = await _connect(api_client, alice, bob)

	response = await api_client.post(
		f"/connections/{connection_id}/messages",
		json={"content": "hi"},
		headers=_h(carol),
	)

	assert response.status_code == 403


@pytest.mark.asyncio
async def test_chat_unknown_connection_is_404(api_client, make_user):
	alice = await make_user("Alice")
	response = await api_client.get(f"/connections/{uuid4()}/messages", headers=_h(alice))
	assert response.status_code == 404


@pytest.mark.asyncio
async def test_outsider_cannot_tell_request_exists(api_client, make_user):
	alice = await make_user("Alice")
	bob = await make_user("Bob")
	eve = await make_user("Eve")
	created = await api_client.post("/connections/requests", json={"receiver_id": bob.id}, headers=_h(alice))

	foreign = await api_client.post(f"/connections/requests/{created.json()['id']}/accept", headers=_h(eve))
	unknown = await api_client.post(f"/connections/requests/{uuid4()}/accept", headers=_h(eve))

	assert foreign.status_code == unknown.status_code == 404
	assert foreign.json()["detail"] == unknown.json()["detail"]
