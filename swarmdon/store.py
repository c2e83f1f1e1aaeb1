"""
SQLite-backed account directory.

Schema
------
registration   : Mastodon instance URL -> app registration (JSON)
user           : account key -> Account (JSON)
swarm_mapping  : Swarm user id -> account key

Every table is a plain key/value pair. The account key is
"{instance_url}:{mastodon_account_id}", so it stays stable across relinks.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import pydantic

from swarmdon.errors import PersistenceError
from swarmdon.logger import logger
from swarmdon.models import Account, AppRegistration, MastodonCredential

_TABLES = ("registration", "user", "swarm_mapping")


def account_key(instance_url: str, mastodon_id: str) -> str:
    return f"{instance_url}:{mastodon_id}"


class Database:
    """Thin wrapper around a SQLite file holding accounts and registrations."""

    def __init__(self, path: str | Path):
        self.path = str(path)

    @classmethod
    def open(cls, path: str | Path) -> "Database":
        db = cls(path)
        db._init()
        return db

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        try:
            con = sqlite3.connect(self.path, timeout=30)
        except sqlite3.Error as e:
            raise PersistenceError(f"unable to open {self.path}: {e}") from e
        try:
            yield con
            con.commit()
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e
        finally:
            con.close()

    def _init(self) -> None:
        with self._conn() as con:
            for table in _TABLES:
                con.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} ("
                    "key TEXT PRIMARY KEY, value TEXT NOT NULL)"
                )

    # ── raw key/value access ──────────────────────────────────────────────────

    def _get(self, table: str, key: str) -> str | None:
        with self._conn() as con:
            row = con.execute(
                f"SELECT value FROM {table} WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def _put(self, table: str, key: str, value: str) -> None:
        with self._conn() as con:
            con.execute(
                f"INSERT INTO {table} (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    @staticmethod
    def _load_account(key: str, raw: str) -> Account:
        try:
            return Account.model_validate_json(raw)
        except pydantic.ValidationError as e:
            raise PersistenceError(f"corrupt account record {key}: {e}") from e

    # ── registrations ─────────────────────────────────────────────────────────

    def get_registration(self, instance_url: str) -> AppRegistration | None:
        raw = self._get("registration", instance_url)
        if raw is None:
            return None
        try:
            return AppRegistration.model_validate_json(raw)
        except pydantic.ValidationError as e:
            raise PersistenceError(f"corrupt registration {instance_url}: {e}") from e

    def save_registration(self, registration: AppRegistration) -> None:
        self._put("registration", registration.base, registration.model_dump_json())

    # ── accounts ──────────────────────────────────────────────────────────────

    def get_user(self, key: str) -> Account | None:
        raw = self._get("user", key)
        return self._load_account(key, raw) if raw is not None else None

    def get_mastodon_user(self, instance_url: str, mastodon_id: str) -> Account | None:
        return self.get_user(account_key(instance_url, mastodon_id))

    def create_user(
        self, instance_url: str, mastodon_id: str, credential: MastodonCredential
    ) -> Account:
        account = Account(mastodon=credential)
        self.put_user(account_key(instance_url, mastodon_id), account)
        return account

    def put_user(self, key: str, account: Account) -> None:
        self._put("user", key, account.model_dump_json())

    def get_users(self) -> dict[str, Account]:
        """Every readable account. Corrupt records are logged and left out."""
        with self._conn() as con:
            rows = con.execute("SELECT key, value FROM user ORDER BY key").fetchall()
        users = {}
        for key, raw in rows:
            try:
                users[key] = self._load_account(key, raw)
            except PersistenceError as e:
                logger.error(f"[store] skipping {e}")
        return users

    def link_swarm(self, key: str, swarm_id: str, access_token: str) -> Account:
        """Attach a Swarm identity to an account and index it by Swarm id."""
        with self._conn() as con:
            con.execute("BEGIN IMMEDIATE")
            row = con.execute("SELECT value FROM user WHERE key = ?", (key,)).fetchone()
            if row is None:
                raise PersistenceError(f"no account {key}")
            account = self._load_account(key, row[0])
            account.swarm_id = swarm_id
            account.swarm_access_token = access_token
            con.execute(
                "UPDATE user SET value = ? WHERE key = ?",
                (account.model_dump_json(), key),
            )
            con.execute(
                "INSERT INTO swarm_mapping (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (swarm_id, key),
            )
        return account

    def get_account_key_for_swarm_user(self, swarm_id: str) -> str | None:
        return self._get("swarm_mapping", swarm_id)

    def set_watermark(self, key: str, checkin_id: str) -> None:
        with self._conn() as con:
            con.execute("BEGIN IMMEDIATE")
            row = con.execute("SELECT value FROM user WHERE key = ?", (key,)).fetchone()
            if row is None:
                raise PersistenceError(f"no account {key}")
            account = self._load_account(key, row[0])
            account.watermark = checkin_id
            con.execute(
                "UPDATE user SET value = ? WHERE key = ?",
                (account.model_dump_json(), key),
            )
