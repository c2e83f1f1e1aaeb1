"""Turn raw Swarm payloads into checkins the relay can post.

Both ingestion channels end up here: the push webhook hands over a JSON
string plus the shared secret, the poller hands over the items of a
recent-checkins page. Anything that should never be posted (bad secret,
malformed payload, private checkin) is rejected before it reaches the
dispatcher.
"""

import hmac
from pathlib import Path

import pydantic

from swarmdon.errors import ValidationError
from swarmdon.logger import logger
from swarmdon.models import SwarmCheckin, SwarmLocation


def normalize_push(payload: str, secret: str, expected_secret: str) -> SwarmCheckin:
    """Validate a push and return its checkin, or raise ValidationError."""
    if not expected_secret or not hmac.compare_digest(
        secret.encode(), expected_secret.encode()
    ):
        raise ValidationError("invalid push secret")

    try:
        checkin = SwarmCheckin.model_validate_json(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(f"unable to parse the checkin push: {e}") from e

    if checkin.is_private:
        raise ValidationError(f"checkin {checkin.id} is private")
    return checkin


def normalize_feed(items: list[dict]) -> list[SwarmCheckin]:
    """Parse a feed page, keeping its newest-first order.

    Private and unparsable items are dropped here whether or not the API
    already filtered them.
    """
    checkins: list[SwarmCheckin] = []
    for item in items:
        try:
            checkin = SwarmCheckin.model_validate(item)
        except pydantic.ValidationError as e:
            logger.warning(f"Dropping unparsable feed item {item.get('id', '?')}: {e}")
            continue
        if checkin.is_private:
            logger.debug(f"Dropping private checkin {checkin.id}")
            continue
        checkins.append(checkin)
    return checkins


def location_display(location: SwarmLocation) -> str | None:
    if location.city and location.state:
        return f"{location.city}, {location.state}"
    if not location.city and location.state and location.country:
        return f"{location.state}, {location.country}"
    if not location.city and not location.state and location.country:
        return location.country
    return None


def resolve_annotation(
    checkin: SwarmCheckin, friends_map: dict[str, str]
) -> str | None:
    """Return the shout to post, or None when it has nothing of its own.

    Swarm appends "with Alex, Bob" to the shout when companions are tagged.
    That suffix is replaced by Mastodon mentions for companions found in
    `friends_map` (keyed by Swarm handle); others keep their first name.
    """
    shout = checkin.shout
    if not checkin.with_:
        return shout
    if shout is None:
        return None

    with_names = "with " + ", ".join(u.first_name for u in checkin.with_)
    stripped = shout
    while with_names and stripped.endswith(with_names):
        stripped = stripped[: -len(with_names)]
    stripped = stripped.strip()
    if not stripped:
        return None

    names = ", ".join(
        f"@{friends_map[u.handle]}" if u.handle in friends_map else u.first_name
        for u in checkin.with_
    )
    return f"{stripped} with {names}"


def read_friends_map(path: str | Path) -> dict[str, str]:
    """Parse a file of `swarm_handle=mastodon_id` lines."""
    friends: dict[str, str] = {}
    for lineno, line in enumerate(Path(path).read_text().splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        if "=" not in line:
            raise ValueError(f"{path}:{lineno}: invalid line {line!r}")
        swarm_handle, mastodon_id = line.split("=", 1)
        friends[swarm_handle.strip()] = mastodon_id.strip()
    return friends


def load_friends_map(path: str | Path | None) -> dict[str, str]:
    """Like read_friends_map, but an unreadable file yields an empty map."""
    if not path:
        return {}
    try:
        friends = read_friends_map(path)
    except (OSError, ValueError) as e:
        logger.error(f"Unable to read friends map {path}: {e}")
        return {}
    logger.info(f"Loaded {len(friends)} friends from {path}")
    return friends
