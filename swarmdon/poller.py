"""Background poller: safety net for missed pushes.

Every POLL_INTERVAL_SECONDS, fetch the recent checkins of every linked
account, keep those newer than the account's watermark, relay them oldest
first, then move the watermark to the newest one relayed.

Accounts are handled concurrently and independently: a failed fetch or an
unexpected error for one account is logged and only drops that account
from the current cycle.
"""

import asyncio

from swarmdon.adapter import normalize_feed
from swarmdon.dedup import select_new
from swarmdon.errors import UpstreamError
from swarmdon.logger import log_relay, logger
from swarmdon.models import Account, SwarmCheckin
from swarmdon.relay import dispatch
from swarmdon.state import AppState


def _record_success(state: AppState, key: str) -> None:
    failures = state.poll_failures.pop(key, 0)
    if failures:
        logger.info(f"[poller] {key} recovered after {failures} consecutive failure(s)")


def _record_failure(state: AppState, key: str, error: Exception) -> None:
    state.poll_failures[key] = state.poll_failures.get(key, 0) + 1
    logger.warning(
        f"[poller] {key} fetch failure #{state.poll_failures[key]}: {error}"
    )


async def _fetch(
    state: AppState, key: str, account: Account
) -> list[SwarmCheckin] | None:
    """Fetch one account's recent checkins, or None if the fetch failed."""
    try:
        items = await state.swarm.get_recent_checkins(
            account.swarm_access_token, state.page_size
        )
    except UpstreamError as e:
        _record_failure(state, key, e)
        return None
    except Exception as e:
        logger.error(f"[poller] {key}: unexpected fetch error: {e!r}")
        return None
    _record_success(state, key)
    return normalize_feed(items)


async def _relay_batch(
    state: AppState,
    key: str,
    account: Account,
    checkins: list[SwarmCheckin],
    expected: str | None,
) -> None:
    """Relay an oldest-first batch, then store the last attempted id as the watermark.

    The write happens even if the batch is cut short, so checkins already
    handled are not relayed again next cycle. It is skipped when a push moved
    the watermark away from `expected` while the batch was in flight.
    """
    last_id = None
    try:
        for checkin in checkins:
            last_id = checkin.id
            result = await dispatch(
                account,
                checkin,
                swarm=state.swarm,
                mastodon=state.mastodon,
                friends_map=state.friends_map,
                policy=state.poll_policy,
            )
            log_relay("poller", key, checkin.id, result.outcome.value, result.reason)
    finally:
        if last_id is not None:
            written = await asyncio.to_thread(
                state.watermarks.advance_from, key, expected, last_id
            )
            if not written:
                logger.info(
                    f"[poller] {key}: watermark moved during cycle, keeping {state.watermarks.get(key)}"
                )


async def _relay_isolated(
    state: AppState,
    key: str,
    account: Account,
    checkins: list[SwarmCheckin],
    expected: str | None,
) -> int:
    try:
        await _relay_batch(state, key, account, checkins, expected)
    except Exception as e:
        logger.error(f"[poller] {key}: unexpected error: {e!r}")
        return 0
    return len(checkins)


async def poll_all_accounts(state: AppState) -> int:
    """Run one poll cycle over every linked account.

    Returns the number of checkins handled (posted, skipped or failed).
    """
    users = await asyncio.to_thread(state.db.get_users)
    accounts = {k: a for k, a in users.items() if a.is_linked}
    if not accounts:
        logger.debug("[poller] No linked accounts, skipping poll cycle")
        return 0

    marks = state.watermarks.snapshot()

    # Fetch every feed concurrently and wait for all of them.
    keys = list(accounts)
    feeds = await asyncio.gather(*(_fetch(state, k, accounts[k]) for k in keys))

    # Reconcile against the watermark snapshot.
    batches: dict[str, list[SwarmCheckin]] = {}
    for key, feed in zip(keys, feeds):
        if feed is None:
            continue
        account = accounts[key]
        fresh = select_new(marks.get(key, account.watermark), feed, state.page_size)
        if fresh:
            logger.debug(f"[poller] {key}: {len(fresh)} new checkin(s)")
            batches[key] = fresh

    counts = await asyncio.gather(
        *(
            _relay_isolated(state, k, accounts[k], batch, marks.get(k))
            for k, batch in batches.items()
        )
    )
    return sum(counts)


async def poll_loop(state: AppState, interval: float) -> None:
    logger.info(f"[poller] Started, polling every {interval}s")
    while True:
        try:
            await poll_all_accounts(state)
        except Exception as e:
            logger.error(f"[poller] Unexpected error: {e}")
        await asyncio.sleep(interval)
