"""In-memory watermarks, persisted through the account store.

Push handlers and the poller both read and advance watermarks. The map is
guarded by one lock, held only while the dict itself is touched; network
calls and the store write happen outside it.
"""

import threading

from swarmdon.store import Database


class WatermarkMap:
    def __init__(self, db: Database):
        self._db = db
        self._lock = threading.Lock()
        self._marks: dict[str, str] = {}

    def load(self) -> int:
        """Seed the map from every stored account. Returns the number loaded."""
        users = self._db.get_users()
        with self._lock:
            self._marks = {key: account.watermark for key, account in users.items()}
        return len(users)

    def get(self, key: str) -> str:
        with self._lock:
            return self._marks.get(key, "")

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._marks)

    def advance(self, key: str, checkin_id: str) -> bool:
        """Record `checkin_id` as the account's watermark.

        Last writer wins. Returns False when the value was already current,
        in which case nothing is written.
        """
        with self._lock:
            if self._marks.get(key) == checkin_id:
                return False
            self._marks[key] = checkin_id
        self._db.set_watermark(key, checkin_id)
        return True

    def advance_from(self, key: str, expected: str | None, checkin_id: str) -> bool:
        """Advance only if the watermark is still `expected`.

        `expected` is the value the caller reconciled against (None when the
        account had no entry). If another writer moved the watermark since,
        nothing is written and False is returned.
        """
        with self._lock:
            current = self._marks.get(key)
            if current != expected or current == checkin_id:
                return False
            self._marks[key] = checkin_id
        self._db.set_watermark(key, checkin_id)
        return True
