"""Error types shared by the relay, the store and the API clients."""


class SwarmdonError(Exception):
    """Base class for every error raised by swarmdon."""


class ValidationError(SwarmdonError):
    """A push carried a bad secret, an unparsable payload or a private checkin."""


class NotFoundError(SwarmdonError):
    """No linked account exists for an incoming checkin."""


class UpstreamError(SwarmdonError):
    """A call to the Swarm or Mastodon API failed."""


class PersistenceError(SwarmdonError):
    """The account store could not be read or written."""
