import json
import os
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

# Set predictable config for tests.
os.environ["SWARM_PUSH_SECRET"] = "test-secret-123"
os.environ["POLLING_ENABLED"] = "false"
os.environ["BASE_URL"] = "http://testserver"
os.environ["SESSION_SECRET"] = "test-session-secret"

from swarmdon.main import app  # noqa: E402
from swarmdon.mastodon import MastodonClient  # noqa: E402
from swarmdon.models import MastodonCredential, SwarmCheckinDetail  # noqa: E402
from swarmdon.relay import NoAnnotationPolicy  # noqa: E402
from swarmdon.state import AppState  # noqa: E402
from swarmdon.store import Database  # noqa: E402
from swarmdon.swarm import SwarmClient  # noqa: E402
from swarmdon.watermark import WatermarkMap  # noqa: E402

PUSH_SECRET = "test-secret-123"
INSTANCE = "https://example.social"
ACCOUNT_KEY = f"{INSTANCE}:42"
SWARM_USER_ID = "swarm-1"

VENUE = {
    "id": "v1",
    "name": "A Place",
    "contact": {},
    "location": {
        "address": "123 A St",
        "lat": 1,
        "lng": -1,
        "postalCode": "10000",
        "cc": "US",
        "city": "New York",
        "state": "NY",
        "country": "United States",
    },
    "categories": [],
    "verified": False,
}


def checkin_payload(
    checkin_id: str,
    shout: str | None = "Coffee time",
    with_: list[dict] | None = None,
    private: bool = False,
    user_id: str = SWARM_USER_ID,
) -> dict:
    payload = {
        "id": checkin_id,
        "createdAt": 1234,
        "type": "checkin",
        "visibility": "closeFriends",
        "timeZoneOffset": -480,
        "user": {"id": user_id, "firstName": "Rice", "lastName": "R", "handle": "rice"},
        "venue": VENUE,
    }
    if shout is not None:
        payload["shout"] = shout
    if with_:
        payload["with"] = with_
    if private:
        payload["private"] = True
    return payload


def checkin_detail(checkin_id: str, **kwargs) -> SwarmCheckinDetail:
    payload = checkin_payload(checkin_id, **kwargs)
    payload["checkinShortUrl"] = f"https://swarmapp.com/c/{checkin_id}"
    return SwarmCheckinDetail.model_validate(payload)


def push_form(payload: dict, secret: str = PUSH_SECRET) -> dict:
    return {"checkin": json.dumps(payload), "secret": secret}


def credential(base: str = INSTANCE, token: str = "masto-token") -> MastodonCredential:
    return MastodonCredential(
        base=base,
        client_id="cid",
        client_secret="csecret",
        redirect="http://testserver/mastodon/callback",
        token=token,
    )


@pytest.fixture
def db(tmp_path):
    return Database.open(tmp_path / "swarmdon.db")


@pytest.fixture
def linked_account(db):
    """A fully linked account, returned as its key."""
    db.create_user(INSTANCE, "42", credential())
    db.link_swarm(ACCOUNT_KEY, SWARM_USER_ID, "swarm-token")
    return ACCOUNT_KEY


@pytest.fixture
def swarm():
    mock = AsyncMock(spec=SwarmClient)
    mock.get_checkin_details.side_effect = lambda token, checkin_id: checkin_detail(
        checkin_id
    )
    return mock


@pytest.fixture
def mastodon():
    mock = AsyncMock(spec=MastodonClient)
    mock.post_status.return_value = "status-1"
    return mock


@pytest.fixture
def state(db, swarm, mastodon):
    watermarks = WatermarkMap(db)
    watermarks.load()
    return AppState(
        db=db,
        watermarks=watermarks,
        swarm=swarm,
        mastodon=mastodon,
        push_policy=NoAnnotationPolicy.GENERIC,
        poll_policy=NoAnnotationPolicy.SKIP,
        page_size=10,
    )


@pytest.fixture
def client(state):
    app.state.swarmdon = state
    yield TestClient(app, raise_server_exceptions=False)
    app.state.swarmdon = None
