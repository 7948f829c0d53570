# tests/conftest.py
import os
import sys
import asyncio
import json
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(os.path.abspath("."))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from app.database import Base, get_session_factory
from app.auth import create_access_token
from app.core import get_settings
from app import models
from main import app


# DB (SQLite in-memory for tests)
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

API = get_settings().API_PREFIX + "/v1"


@pytest.fixture(scope="session", autouse=True)
def prepare_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with TestingSessionLocal() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


# One event loop for the WHOLE pytest session
@pytest.fixture(scope="session")
def session_loop():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    yield loop
    loop.close()


# Simple ASGI response/client
class SimpleResponse:
    def __init__(
        self, status_code: int, body: bytes, headers: list[tuple[bytes, bytes]]
    ):
        self.status_code = status_code
        self.content = body
        self.headers = {k.decode().lower(): v.decode() for k, v in headers}

    @property
    def text(self) -> str:
        return self.content.decode()

    def json(self):
        return json.loads(self.content.decode())


class SimpleClient:
    """
    Important:
    - uses ONE shared session loop (passed from fixture)
    - does NOT call asyncio.run()
    - does NOT close the loop
    - collects streamed bodies until the last chunk
    """

    def __init__(self, app, loop, token=None, raise_server_exceptions=True):
        self.app = app
        self.loop = loop
        self.token = token
        self.raise_server_exceptions = raise_server_exceptions

    def close(self):
        # do not close the loop here (session fixture closes it)
        pass

    def request(
        self,
        method: str,
        path: str,
        json_body=None,
        content=None,
        headers=None,
        query: str = "",
    ):
        headers = {k.lower(): v for k, v in (headers or {}).items()}
        headers.setdefault("accept", "application/json")
        if self.token and "authorization" not in headers:
            headers["authorization"] = f"Bearer {self.token}"
        body_bytes = b""

        if json_body is not None:
            body_bytes = json.dumps(json_body).encode()
            headers.setdefault("content-type", "application/json")
        elif content is not None:
            body_bytes = content if isinstance(content, bytes) else content.encode()

        raw_headers = [
            (k.encode(), v.encode()) for k, v in headers.items() if v is not None
        ]
        scope = {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": "2.4"},
            "http_version": "1.1",
            "method": method.upper(),
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "headers": raw_headers,
            "query_string": query.encode(),
            "client": ("testclient", 5000),
            "server": ("testserver", 80),
        }

        response_done = asyncio.Event()
        body_sent = False

        async def receive():
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": body_bytes, "more_body": False}
            await response_done.wait()
            return {"type": "http.disconnect"}

        response_body = bytearray()
        response_status = 500
        response_headers: list[tuple[bytes, bytes]] = []

        async def send(message):
            nonlocal response_status, response_headers
            if message["type"] == "http.response.start":
                response_status = message["status"]
                response_headers = message.get("headers", [])
            elif message["type"] == "http.response.body":
                response_body.extend(message.get("body", b""))
                if not message.get("more_body", False):
                    response_done.set()

        async def run():
            try:
                await self.app(scope, receive, send)
            finally:
                response_done.set()

        # ensure the loop is the current one
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_until_complete(run())
        except Exception:
            if self.raise_server_exceptions:
                raise
        return SimpleResponse(response_status, bytes(response_body), response_headers)

    def get(self, path: str, headers=None, query: str = "", content=None):
        return self.request("GET", path, headers=headers, query=query, content=content)

    def post(self, path: str, json=None, content=None, headers=None, query: str = ""):
        return self.request(
            "POST", path, json_body=json, content=content, headers=headers, query=query
        )

    def put(self, path: str, json=None, content=None, headers=None):
        return self.request("PUT", path, json_body=json, content=content, headers=headers)

    def delete(self, path: str, headers=None, query: str = "", content=None):
        return self.request(
            "DELETE", path, headers=headers, query=query, content=content
        )

    def patch(self, path: str, json=None, headers=None):
        return self.request("PATCH", path, json_body=json, headers=headers)


@pytest.fixture()
def token():
    return create_access_token("tests", [get_settings().API_PERMISSION])


# Client fixture: override the session factory per test
@pytest.fixture()
def client(session_loop, token):
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal

    c = SimpleClient(app, loop=session_loop, token=token)
    try:
        yield c
    finally:
        app.dependency_overrides.clear()
        c.close()


@pytest.fixture()
def anonymous_client(session_loop):
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal

    c = SimpleClient(app, loop=session_loop)
    try:
        yield c
    finally:
        app.dependency_overrides.clear()
        c.close()


# Seed helpers
def new_uuid() -> str:
    return str(uuid.uuid4())


def seed_channel_types(session, *types):
    for channel_type in types or ("email", "webhook", "rocketchat"):
        session.add(models.AvailableChannelType(type=channel_type, name=channel_type))
    session.commit()


def seed_channel(session, name="E-Mail", channel_type="email", config=None, deleted=False):
    identifier = new_uuid()
    session.add(
        models.Channel(
            external_uuid=identifier,
            name=name,
            type=channel_type,
            config=json.dumps(config) if config is not None else None,
            deleted=deleted,
        )
    )
    session.commit()
    return identifier


@pytest.fixture()
def channel_types(db_session):
    seed_channel_types(db_session)


@pytest.fixture()
def email_channel(db_session, channel_types):
    return seed_channel(db_session, config={"host": "localhost", "port": 25})


@pytest.fixture()
def webhook_channel(db_session, channel_types):
    return seed_channel(db_session, name="Webhook", channel_type="webhook")


def contact_payload(channel, identifier=None, **fields):
    payload = {
        "id": identifier or new_uuid(),
        "full_name": "Jane Doe",
        "default_channel": channel,
        "addresses": {"email": "jane@example.com"},
    }
    payload.update(fields)
    return payload
