from uuid import uuid4

import pytest


@pytest.mark.asyncio
async def test_request_notification_lifecycle(api_client, make_user):
	alice = await make_user("Alice")
	bob = await make_user("Bob")
	await api_client.post("/connections/requests", json={"receiver_id": bob.id}, headers={"X-User-Id": alice.id})
	headers = {"X-User-Id": bob.id}

	listed = await api_client.get("/notifications", headers=headers)
	[note] = listed.json()
	assert note["type"] == "connection_request"
	assert note["data"]["sender_name"] == "Alice"
	assert (await api_client.get("/notifications/unread", headers=headers)).json() == {"unread": 1}

	read = await api_client.post(f"/notifications/{note['id']}/read", headers=headers)
	assert read.status_code == 200
	assert read.json()["is_read"] is True
	assert (await api_client.get("/notifications/unread", headers=headers)).json() == {"unread": 0}
	assert (await api_client.post("/notifications/read-all", headers=headers)).json() == {"updated": 0}


@pytest.mark.asyncio
async def test_foreign_notification_looks_like_unknown_one(api_client, make_user):
	alice = await make_user("Alice")
	bob = await make_user("Bob")
	await api_client.post("/connections/requests", json={"receiver_id": bob.id}, headers={"X-User-Id": alice.id})
	[note] = (await api_client.get("/notifications", headers={"X-User-Id": bob.id})).json()

	foreign = await api_client.post(f"/notifications/{note['id']}/read", headers={"X-User-Id": alice.id})
	unknown = await api_client.post(f"/notifications/{uuid4()}/read", headers={"X-User-Id": alice.id})

	assert foreign.status_code == unknown.status_code == 404
	assert foreign.json()["detail"] == unknown.json()["detail"]
	assert (await api_client.get("/notifications/unread", headers={"X-User-Id": bob.id})).json() == {"unread": 1}


@pytest.mark.asyncio
async def test_unknown_notification_is_404(api_client, make_user):
	bob = await make_user("Bob")
	response = await api_client.post(f"/notifications/{uuid4()}/read", headers={"X-User-Id": bob.id})
	assert response.status_code == 404
