"""Relay a single checkin to Mastodon.

`dispatch` never raises for upstream trouble: it reports whether the
checkin was posted, skipped or failed, and the caller advances the
watermark in every case. A failed post is not retried.
"""

import asyncio
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel

from swarmdon.adapter import location_display, resolve_annotation
from swarmdon.errors import NotFoundError, UpstreamError
from swarmdon.logger import log_relay
from swarmdon.mastodon import MastodonClient
from swarmdon.models import Account, SwarmCheckin
from swarmdon.store import Database
from swarmdon.swarm import SwarmClient

if TYPE_CHECKING:
    from swarmdon.state import AppState


class Outcome(str, Enum):
    POSTED = "posted"
    SKIPPED = "skipped"
    FAILED = "failed"


class NoAnnotationPolicy(str, Enum):
    """What to post for a checkin whose shout has no content of its own."""

    GENERIC = "generic"  # "I'm at <venue>"
    SKIP = "skip"


class DispatchResult(BaseModel):
    outcome: Outcome
    reason: str = ""


def format_status(checkin: SwarmCheckin, annotation: str | None, url: str) -> str:
    place = checkin.venue.name
    where = location_display(checkin.venue.location)
    if where:
        place = f"{place} in {where}"
    if annotation is None:
        return f"I'm at {place} {url}"
    return f"{annotation} (@ {place}) {url}"


async def dispatch(
    account: Account,
    checkin: SwarmCheckin,
    *,
    swarm: SwarmClient,
    mastodon: MastodonClient,
    friends_map: dict[str, str],
    policy: NoAnnotationPolicy = NoAnnotationPolicy.SKIP,
) -> DispatchResult:
    if checkin.is_private:
        return DispatchResult(outcome=Outcome.SKIPPED, reason="private checkin")

    annotation = resolve_annotation(checkin, friends_map)
    if annotation is None and policy is NoAnnotationPolicy.SKIP:
        return DispatchResult(outcome=Outcome.SKIPPED, reason="no shout")

    try:
        details = await swarm.get_checkin_details(account.swarm_access_token, checkin.id)
    except UpstreamError as e:
        return DispatchResult(outcome=Outcome.FAILED, reason=f"unable to retrieve checkin details: {e}")
    except Exception as e:
        return DispatchResult(outcome=Outcome.FAILED, reason=f"unexpected error retrieving checkin details: {e!r}")

    status = format_status(checkin, annotation, details.checkin_short_url)
    try:
        await mastodon.post_status(account.mastodon, status)
    except UpstreamError as e:
        return DispatchResult(outcome=Outcome.FAILED, reason=f"unable to post status: {e}")
    except Exception as e:
        return DispatchResult(outcome=Outcome.FAILED, reason=f"unexpected error posting status: {e!r}")
    return DispatchResult(outcome=Outcome.POSTED)


def find_account(db: Database, checkin: SwarmCheckin) -> tuple[str, Account]:
    """Resolve the linked account that authored a pushed checkin."""
    if checkin.user is None:
        raise NotFoundError(f"checkin {checkin.id} has no user")
    key = db.get_account_key_for_swarm_user(checkin.user.id)
    if key is None:
        raise NotFoundError(f"unknown Swarm user {checkin.user.id}")
    account = db.get_user(key)
    if account is None or not account.is_linked:
        raise NotFoundError(f"no linked account {key} for Swarm user {checkin.user.id}")
    return key, account


async def relay_push(state: "AppState", checkin: SwarmCheckin) -> DispatchResult:
    """Relay a pushed checkin and record it as the account's watermark.

    The push is trusted to be new; the watermark is not consulted.
    """
    key, account = await asyncio.to_thread(find_account, state.db, checkin)
    result = await dispatch(
        account,
        checkin,
        swarm=state.swarm,
        mastodon=state.mastodon,
        friends_map=state.friends_map,
        policy=state.push_policy,
    )
    log_relay("push", key, checkin.id, result.outcome.value, result.reason)
    await asyncio.to_thread(state.watermarks.advance, key, checkin.id)
    return result
