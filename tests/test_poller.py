"""Tests for the background poller logic."""

import sqlite3
import threading

import pytest

from swarmdon import poller
from swarmdon.errors import UpstreamError
from swarmdon.poller import poll_all_accounts
from swarmdon.relay import dispatch
from tests.conftest import INSTANCE, checkin_payload, credential


def _posted_ids(mastodon) -> list[str]:
    return [call.args[1].rsplit("/", 1)[-1] for call in mastodon.post_status.await_args_list]


def _link(db, n: int) -> str:
    key = f"{INSTANCE}:{n}"
    db.create_user(INSTANCE, str(n), credential(token=f"masto-{n}"))
    db.link_swarm(key, f"swarm-{n}", f"swarm-token-{n}")
    return key


@pytest.mark.asyncio
async def test_poll_relays_new_checkins_oldest_first(state, linked_account, swarm, mastodon):
    state.db.set_watermark(linked_account, "c1")
    swarm.get_recent_checkins.return_value = [
        checkin_payload("c4"),
        checkin_payload("c3"),
        checkin_payload("c2"),
        checkin_payload("c1"),
    ]

    handled = await poll_all_accounts(state)

    assert handled == 3
    swarm.get_recent_checkins.assert_awaited_once_with("swarm-token", 10)
    assert _posted_ids(mastodon) == ["c2", "c3", "c4"]
    assert state.watermarks.get(linked_account) == "c4"
    assert state.db.get_user(linked_account).watermark == "c4"


@pytest.mark.asyncio
async def test_poll_does_not_relay_twice(state, linked_account, swarm, mastodon):
    swarm.get_recent_checkins.return_value = [checkin_payload("c2"), checkin_payload("c1")]

    await poll_all_accounts(state)
    assert mastodon.post_status.await_count == 2

    assert await poll_all_accounts(state) == 0
    assert mastodon.post_status.await_count == 2


@pytest.mark.asyncio
async def test_poll_first_run_is_bounded_to_page(state, linked_account, swarm, mastodon):
    state.page_size = 2
    swarm.get_recent_checkins.return_value = [
        checkin_payload(f"c{i}") for i in range(5, 0, -1)
    ]

    await poll_all_accounts(state)

    assert _posted_ids(mastodon) == ["c4", "c5"]


@pytest.mark.asyncio
async def test_poll_skips_checkins_without_shout_but_advances(
    state, linked_account, swarm, mastodon
):
    swarm.get_recent_checkins.return_value = [
        checkin_payload("c3", shout=None),
        checkin_payload("c2"),
    ]

    assert await poll_all_accounts(state) == 2

    assert _posted_ids(mastodon) == ["c2"]
    assert state.watermarks.get(linked_account) == "c3"


@pytest.mark.asyncio
async def test_poll_never_posts_private_checkins(state, linked_account, swarm, mastodon):
    swarm.get_recent_checkins.return_value = [
        checkin_payload("c2", private=True),
        checkin_payload("c1", private=True),
    ]

    assert await poll_all_accounts(state) == 0
    mastodon.post_status.assert_not_awaited()


@pytest.mark.asyncio
async def test_poll_failed_post_still_advances(state, linked_account, swarm, mastodon):
    swarm.get_recent_checkins.return_value = [checkin_payload("c2"), checkin_payload("c1")]
    mastodon.post_status.side_effect = UpstreamError("down")

    await poll_all_accounts(state)

    assert mastodon.post_status.await_count == 2
    assert state.watermarks.get(linked_account) == "c2"


@pytest.mark.asyncio
async def test_poll_isolates_fetch_failure(state, swarm, mastodon):
    broken = _link(state.db, 1)
    healthy = _link(state.db, 2)

    async def recent(token, limit):
        if token == "swarm-token-1":
            raise UpstreamError("connection refused")
        return [checkin_payload("c1", user_id="swarm-2")]

    swarm.get_recent_checkins.side_effect = recent

    assert await poll_all_accounts(state) == 1
    assert state.poll_failures == {broken: 1}
    assert state.watermarks.get(healthy) == "c1"
    assert state.watermarks.get(broken) == ""


@pytest.mark.asyncio
async def test_poll_unexpected_post_error_counts_as_failed(state, swarm, mastodon):
    first = _link(state.db, 1)
    second = _link(state.db, 2)
    swarm.get_recent_checkins.return_value = [checkin_payload("c1")]

    async def post(credential, status):
        if credential.token == "masto-1":
            raise RuntimeError("bug")
        return "ok"

    mastodon.post_status.side_effect = post

    assert await poll_all_accounts(state) == 2
    assert state.watermarks.get(first) == "c1"
    assert state.watermarks.get(second) == "c1"


@pytest.mark.asyncio
async def test_poll_unexpected_error_does_not_repost_earlier_checkins(
    state, linked_account, swarm, mastodon
):
    state.db.set_watermark(linked_account, "c0")
    swarm.get_recent_checkins.return_value = [
        checkin_payload("c2"),
        checkin_payload("c1"),
        checkin_payload("c0"),
    ]

    async def post(credential, status):
        if status.endswith("/c2"):
            raise RuntimeError("bug")
        return "ok"

    mastodon.post_status.side_effect = post

    await poll_all_accounts(state)
    await poll_all_accounts(state)

    assert _posted_ids(mastodon) == ["c1", "c2"]
    assert state.db.get_user(linked_account).watermark == "c2"


@pytest.mark.asyncio
async def test_poll_batch_cut_short_keeps_handled_checkins(
    state, swarm, mastodon, monkeypatch
):
    broken = _link(state.db, 1)
    healthy = _link(state.db, 2)
    swarm.get_recent_checkins.return_value = [
        checkin_payload("c3"),
        checkin_payload("c2"),
        checkin_payload("c1"),
    ]

    async def flaky_dispatch(account, checkin, **kwargs):
        if account.mastodon.token == "masto-1" and checkin.id == "c2":
            raise RuntimeError("bug")
        return await dispatch(account, checkin, **kwargs)

    monkeypatch.setattr(poller, "dispatch", flaky_dispatch)

    assert await poll_all_accounts(state) == 3
    assert state.watermarks.get(healthy) == "c3"
    assert state.db.get_user(broken).watermark == "c2"

    await poll_all_accounts(state)
    reposted = [
        status
        for cred, status in (call.args for call in mastodon.post_status.await_args_list)
        if cred.token == "masto-1" and status.endswith("/c1")
    ]
    assert len(reposted) == 1


@pytest.mark.asyncio
async def test_poll_skips_corrupt_account_records(state, linked_account, swarm, mastodon):
    con = sqlite3.connect(state.db.path)
    con.execute("INSERT INTO user (key, value) VALUES ('https://other:1', '{broken')")
    con.commit()
    con.close()
    swarm.get_recent_checkins.return_value = [checkin_payload("c1")]

    assert await poll_all_accounts(state) == 1
    assert _posted_ids(mastodon) == ["c1"]
    assert state.watermarks.get(linked_account) == "c1"


@pytest.mark.asyncio
async def test_poll_keeps_watermark_pushed_mid_cycle(state, linked_account, swarm, mastodon):
    swarm.get_recent_checkins.return_value = [checkin_payload("c2"), checkin_payload("c1")]

    async def post(credential, status):
        if status.endswith("/c1"):
            # A push for a newer checkin lands while the batch is in flight.
            state.watermarks.advance(linked_account, "c9")
        return "ok"

    mastodon.post_status.side_effect = post

    await poll_all_accounts(state)

    assert _posted_ids(mastodon) == ["c1", "c2"]
    assert state.watermarks.get(linked_account) == "c9"
    assert state.db.get_user(linked_account).watermark == "c9"


@pytest.mark.asyncio
async def test_poll_store_access_runs_off_the_event_loop(
    state, linked_account, swarm, monkeypatch
):
    loop_thread = threading.get_ident()
    seen = []
    get_users = state.db.get_users
    set_watermark = state.db.set_watermark

    def recording_get_users():
        seen.append(threading.get_ident())
        return get_users()

    def recording_set_watermark(key, checkin_id):
        seen.append(threading.get_ident())
        set_watermark(key, checkin_id)

    monkeypatch.setattr(state.db, "get_users", recording_get_users)
    monkeypatch.setattr(state.db, "set_watermark", recording_set_watermark)
    swarm.get_recent_checkins.return_value = [checkin_payload("c1")]

    await poll_all_accounts(state)

    assert len(seen) == 2
    assert loop_thread not in seen


@pytest.mark.asyncio
async def test_poll_failure_count_resets_on_success(state, linked_account, swarm):
    swarm.get_recent_checkins.side_effect = UpstreamError("timeout")
    await poll_all_accounts(state)
    await poll_all_accounts(state)
    assert state.poll_failures[linked_account] == 2

    swarm.get_recent_checkins.side_effect = None
    swarm.get_recent_checkins.return_value = []
    await poll_all_accounts(state)
    assert linked_account not in state.poll_failures


@pytest.mark.asyncio
async def test_poll_ignores_unlinked_accounts(state, swarm):
    state.db.create_user(INSTANCE, "7", credential())

    assert await poll_all_accounts(state) == 0
    swarm.get_recent_checkins.assert_not_awaited()
