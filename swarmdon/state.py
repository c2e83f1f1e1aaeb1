"""Services shared by the webhook handlers and the poller."""

from dataclasses import dataclass, field

import httpx

from swarmdon import config
from swarmdon.adapter import load_friends_map
from swarmdon.mastodon import MastodonClient
from swarmdon.relay import NoAnnotationPolicy
from swarmdon.store import Database
from swarmdon.swarm import SwarmClient
from swarmdon.watermark import WatermarkMap


@dataclass
class AppState:
    db: Database
    watermarks: WatermarkMap
    swarm: SwarmClient
    mastodon: MastodonClient
    http: httpx.AsyncClient | None = None
    friends_map: dict[str, str] = field(default_factory=dict)
    push_policy: NoAnnotationPolicy = NoAnnotationPolicy.GENERIC
    poll_policy: NoAnnotationPolicy = NoAnnotationPolicy.SKIP
    page_size: int = config.FEED_PAGE_SIZE
    # Consecutive fetch failures per account key, for recovery logging.
    poll_failures: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_config(cls) -> "AppState":
        """Build the state from environment config.

        Opening the database is the one failure that is allowed to abort
        startup.
        """
        db = Database.open(config.DATABASE_PATH)
        watermarks = WatermarkMap(db)
        watermarks.load()
        http = httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)
        return cls(
            db=db,
            watermarks=watermarks,
            swarm=SwarmClient(
                http,
                client_id=config.SWARM_CLIENT_ID,
                client_secret=config.SWARM_CLIENT_SECRET,
                redirect_uri=f"{config.BASE_URL}/swarm/callback",
                timeout=config.HTTP_TIMEOUT_SECONDS,
            ),
            mastodon=MastodonClient(http, timeout=config.HTTP_TIMEOUT_SECONDS),
            http=http,
            friends_map=load_friends_map(config.FRIENDS_MAP_PATH),
            push_policy=NoAnnotationPolicy(config.PUSH_NO_ANNOTATION_POLICY),
            poll_policy=NoAnnotationPolicy(config.POLL_NO_ANNOTATION_POLICY),
            page_size=config.FEED_PAGE_SIZE,
        )

    async def aclose(self) -> None:
        if self.http is not None:
            await self.http.aclose()
