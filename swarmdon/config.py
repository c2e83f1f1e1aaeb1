import os
import secrets

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_PATH = os.getenv("DATABASE_PATH", "swarmdon.db")

LISTEN_HOST = os.getenv("LISTEN_HOST", "127.0.0.1")
LISTEN_PORT = int(os.getenv("LISTEN_PORT", "8000"))

# Public URL of this service, used to build OAuth redirect URIs.
BASE_URL = os.getenv("BASE_URL", "https://127.0.0.1:8000").rstrip("/")

CLIENT_NAME = os.getenv("CLIENT_NAME", "Swarmdon")

SWARM_CLIENT_ID = os.getenv("SWARM_CLIENT_ID", "")
SWARM_CLIENT_SECRET = os.getenv("SWARM_CLIENT_SECRET", "")

# Shared secret Swarm sends with every push. Empty rejects all pushes.
SWARM_PUSH_SECRET = os.getenv("SWARM_PUSH_SECRET", "")

# Session cookie signing key. Auto-generated per process if not set, which
# invalidates in-flight account linking on restart.
SESSION_SECRET = os.getenv("SESSION_SECRET", "") or secrets.token_hex(32)

POLLING_ENABLED = _flag("POLLING_ENABLED", "true")
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "300"))

# Number of recent checkins requested per account on each poll.
FEED_PAGE_SIZE = int(os.getenv("FEED_PAGE_SIZE", "10"))

# Optional file of `swarm_handle=mastodon_id` lines.
FRIENDS_MAP_PATH = os.getenv("FRIENDS_MAP_PATH", "")

# Applied to every outbound call to Swarm and Mastodon.
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))

# What to do with a checkin that has no shout of its own:
# "generic" posts "I'm at <venue>", "skip" posts nothing.
PUSH_NO_ANNOTATION_POLICY = os.getenv("PUSH_NO_ANNOTATION_POLICY", "generic")
POLL_NO_ANNOTATION_POLICY = os.getenv("POLL_NO_ANNOTATION_POLICY", "skip")

# Logging format: "pretty" for colorized console, "json" for structured JSON.
LOG_FORMAT = os.getenv("LOG_FORMAT", "pretty")
