from fastapi import status
from sqlalchemy import select

from app import models
from app.crud import ContactgroupRepository

from conftest import API, contact_payload, new_uuid

GROUPS = f"{API}/contact-groups"


def create_contact(client, channel):
    payload = contact_payload(channel)
    assert client.post(f"{API}/contacts", json=payload).status_code == 201
    return payload["id"]


def test_create_and_get_group(client, email_channel):
    jane = create_contact(client, email_channel)
    identifier = new_uuid()

    response = client.post(GROUPS, json={"id": identifier, "name": "Ops", "users": [jane]})
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["message"] == "Contact Group created successfully"
    assert response.headers["location"] == f"{GROUPS}/{identifier}"

    fetched = client.get(f"{GROUPS}/{identifier}")
    assert fetched.json() == {"id": identifier, "name": "Ops", "users": [jane]}

    contact = client.get(f"{API}/contacts/{jane}").json()
    assert contact["groups"] == [identifier]


def test_group_without_users_lists_empty_array(client):
    identifier = new_uuid()
    assert client.post(GROUPS, json={"id": identifier, "name": "Empty"}).status_code == 201
    assert client.get(f"{GROUPS}/{identifier}").json()["users"] == []


def test_missing_required_fields(client):
    response = client.post(GROUPS, json={"users": []})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["message"] == (
        "Invalid request body: the fields id and name must be present and of type string"
    )


def test_invalid_users(client):
    response = client.post(GROUPS, json={"id": new_uuid(), "name": "x", "users": "a"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["message"] == "Invalid request body: expects users to be an array"

    response = client.post(GROUPS, json={"id": new_uuid(), "name": "x", "users": ["a"]})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["message"] == (
        "Invalid request body: user identifiers must be valid UUIDs"
    )


def test_unknown_user(client):
    user = new_uuid()
    identifier = new_uuid()
    response = client.post(GROUPS, json={"id": identifier, "name": "x", "users": [user]})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["message"] == f"Contact with identifier {user} does not exist"
    assert client.get(f"{GROUPS}/{identifier}").status_code == status.HTTP_404_NOT_FOUND


def test_create_existing_group(client):
    identifier = new_uuid()
    client.post(GROUPS, json={"id": identifier, "name": "Ops"})

    response = client.post(GROUPS, json={"id": identifier, "name": "Ops"})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["message"] == "Contact Group already exists"


def test_put_replaces_members(client, email_channel):
    jane, john = create_contact(client, email_channel), create_contact(client, email_channel)
    identifier = new_uuid()
    url = f"{GROUPS}/{identifier}"

    created = client.put(url, json={"id": identifier, "name": "Ops", "users": [jane]})
    assert created.status_code == status.HTTP_201_CREATED
    assert created.headers["location"] == url

    updated = client.put(url, json={"id": identifier, "name": "Dev", "users": [john]})
    assert updated.status_code == status.HTTP_204_NO_CONTENT
    assert client.get(url).json() == {"id": identifier, "name": "Dev", "users": [john]}


def test_put_identifier_mismatch(client):
    identifier = new_uuid()
    client.post(GROUPS, json={"id": identifier, "name": "Ops"})

    response = client.put(f"{GROUPS}/{identifier}", json={"id": new_uuid(), "name": "Dev"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert client.get(f"{GROUPS}/{identifier}").json()["name"] == "Ops"


def test_post_with_identifier_replaces_group(client, email_channel):
    jane = create_contact(client, email_channel)
    old, new = new_uuid(), new_uuid()
    client.post(GROUPS, json={"id": old, "name": "Ops", "users": [jane]})

    response = client.post(f"{GROUPS}/{old}", json={"id": new, "name": "Ops", "users": [jane]})
    assert response.status_code == status.HTTP_201_CREATED
    assert response.headers["x-resource-identifier"] == new
    assert client.get(f"{GROUPS}/{old}").status_code == status.HTTP_404_NOT_FOUND
    assert client.get(f"{API}/contacts/{jane}").json()["groups"] == [new]


def test_delete_group_keeps_contacts(client, email_channel):
    jane = create_contact(client, email_channel)
    identifier = new_uuid()
    client.post(GROUPS, json={"id": identifier, "name": "Ops", "users": [jane]})

    assert client.delete(f"{GROUPS}/{identifier}").status_code == status.HTTP_204_NO_CONTENT
    assert client.get(f"{GROUPS}/{identifier}").status_code == status.HTTP_404_NOT_FOUND
    assert client.get(f"{API}/contacts/{jane}").json()["groups"] == []


def test_list_and_filter_groups(client):
    for name in ("Ops", "Dev", "Ops Night"):
        client.post(GROUPS, json={"id": new_uuid(), "name": name})

    assert [g["name"] for g in client.get(GROUPS).json()] == ["Ops", "Dev", "Ops Night"]
    filtered = client.get(GROUPS, query="name=Ops*")
    assert [g["name"] for g in filtered.json()] == ["Ops", "Ops Night"]

    response = client.get(GROUPS, query="full_name=x")
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_racing_put_for_new_identifier(client, db_session, monkeypatch):
    identifier = new_uuid()
    url = f"{GROUPS}/{identifier}"
    assert client.put(url, json={"id": identifier, "name": "Ops"}).status_code == 201

    # the second writer did not see the first insert before writing
    monkeypatch.setattr(ContactgroupRepository, "resolve", lambda self, identifier: None)
    monkeypatch.setattr(ContactgroupRepository, "uuid_taken", lambda self, identifier: False)

    response = client.put(url, json={"id": identifier, "name": "Dev"})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["message"] == "Contact Group already exists"

    rows = db_session.scalars(
        select(models.Contactgroup.name).where(
            models.Contactgroup.external_uuid == identifier
        )
    ).all()
    assert rows == ["Ops"]


def test_failed_update_leaves_group_unchanged(client, email_channel):
    jane = create_contact(client, email_channel)
    identifier = new_uuid()
    url = f"{GROUPS}/{identifier}"
    assert client.put(url, json={"id": identifier, "name": "Ops", "users": [jane]}).status_code == 201
    before = client.get(url).json()

    unknown = new_uuid()
    response = client.put(url, json={"id": identifier, "name": "Changed", "users": [unknown]})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["message"] == f"Contact with identifier {unknown} does not exist"

    assert client.get(url).json() == before
