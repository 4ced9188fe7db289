"""SQLite storage for users, feeds, follows and posts."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS feeds (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    last_fetched_at TEXT
);
CREATE TABLE IF NOT EXISTS feed_follows (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    UNIQUE (user_id, feed_id)
);
CREATE TABLE IF NOT EXISTS posts (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    title TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL,
    published_at TEXT NOT NULL,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE
);
"""


class NoRowsError(LookupError):
    """A query that must return one row returned none."""


class DuplicateKeyError(Exception):
    """An insert violated a unique constraint."""


@dataclass(frozen=True)
class User:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    name: str


@dataclass(frozen=True)
class Feed:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    name: str
    url: str
    user_id: uuid.UUID
    last_fetched_at: datetime | None


@dataclass(frozen=True)
class FeedFollow:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    user_id: uuid.UUID
    feed_id: uuid.UUID


@dataclass(frozen=True)
class Post:
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    title: str
    url: str
    description: str
    published_at: datetime
    feed_id: uuid.UUID


@dataclass(frozen=True)
class FeedFollowRow:
    """A follow together with the names of its feed and user."""

    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    user_id: uuid.UUID
    feed_id: uuid.UUID
    feed_name: str
    user_name: str


@dataclass(frozen=True)
class FeedWithUser:
    name: str
    url: str
    user_name: str


def _dump_time(value: datetime) -> str:
    # Aware times are stored in UTC so that text order matches time order.
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat()


def _load_time(value: str | None) -> datetime | None:
    return None if value is None else datetime.fromisoformat(value)


def _user(row: Sequence[Any]) -> User:
    return User(uuid.UUID(row[0]), _load_time(row[1]), _load_time(row[2]), row[3])


def _feed(row: Sequence[Any]) -> Feed:
    return Feed(
        uuid.UUID(row[0]),
        _load_time(row[1]),
        _load_time(row[2]),
        row[3],
        row[4],
        uuid.UUID(row[5]),
        _load_time(row[6]),
    )


def _post(row: Sequence[Any]) -> Post:
    return Post(
        uuid.UUID(row[0]),
        _load_time(row[1]),
        _load_time(row[2]),
        row[3],
        row[4],
        row[5],
        _load_time(row[6]),
        uuid.UUID(row[7]),
    )


def _follow_row(row: Sequence[Any]) -> FeedFollowRow:
    return FeedFollowRow(
        uuid.UUID(row[0]),
        _load_time(row[1]),
        _load_time(row[2]),
        uuid.UUID(row[3]),
        uuid.UUID(row[4]),
        row[5],
        row[6],
    )


_USER_COLUMNS = "id, created_at, updated_at, name"
_FEED_COLUMNS = "id, created_at, updated_at, name, url, user_id, last_fetched_at"
_POST_COLUMNS = "id, created_at, updated_at, title, url, description, published_at, feed_id"


class Queries:
    """The application's queries over one SQLite connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> Queries:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, tuple(params))
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise DuplicateKeyError(
                    f"duplicate key value violates unique constraint: {exc}"
                ) from exc
            raise

    def _one(self, sql: str, params: Sequence[Any], build: Callable[[Sequence[Any]], T]) -> T:
        row = self._execute(sql, params).fetchone()
        if row is None:
            raise NoRowsError("no rows in result set")
        return build(row)

    def _many(self, sql: str, params: Sequence[Any], build: Callable[[Sequence[Any]], T]) -> list[T]:
        return [build(row) for row in self._execute(sql, params)]

    def create_schema(self) -> None:
        """Create the tables if they do not exist yet."""
        self.conn.executescript(_SCHEMA)

    # users

    def create_user(self, id: uuid.UUID, created_at: datetime, updated_at: datetime, name: str) -> User:
        self._execute(
            "INSERT INTO users (id, created_at, updated_at, name) VALUES (?, ?, ?, ?)",
            (str(id), _dump_time(created_at), _dump_time(updated_at), name),
        )
        return self.get_user_by_id(id)

    def get_user(self, name: str) -> User:
        return self._one(f"SELECT {_USER_COLUMNS} FROM users WHERE name = ?", (name,), _user)

    def get_user_by_id(self, id: uuid.UUID) -> User:
        return self._one(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (str(id),), _user)

    def get_users(self) -> list[User]:
        return self._many(f"SELECT {_USER_COLUMNS} FROM users", (), _user)

    def reset_users(self) -> None:
        self._execute("DELETE FROM users")

    # feeds

    def create_feed(
        self,
        id: uuid.UUID,
        created_at: datetime,
        updated_at: datetime,
        name: str,
        url: str,
        user_id: uuid.UUID,
    ) -> Feed:
        self._execute(
            "INSERT INTO feeds (id, created_at, updated_at, name, url, user_id) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (str(id), _dump_time(created_at), _dump_time(updated_at), name, url, str(user_id)),
        )
        return self._one(f"SELECT {_FEED_COLUMNS} FROM feeds WHERE id = ?", (str(id),), _feed)

    def get_feed_by_url(self, url: str) -> Feed:
        return self._one(f"SELECT {_FEED_COLUMNS} FROM feeds WHERE url = ?", (url,), _feed)

    def get_next_feed_to_fetch(self) -> Feed:
        """Return the feed never fetched, or fetched longest ago."""
        return self._one(
            f"SELECT {_FEED_COLUMNS} FROM feeds "
            "ORDER BY last_fetched_at IS NOT NULL, last_fetched_at ASC, updated_at ASC "
            "LIMIT 1",
            (),
            _feed,
        )

    def list_feeds_with_users(self) -> list[FeedWithUser]:
        return self._many(
            "SELECT feeds.name, feeds.url, users.name FROM feeds "
            "JOIN users ON feeds.user_id = users.id",
            (),
            lambda row: FeedWithUser(row[0], row[1], row[2]),
        )

    def mark_feed_fetched(self, id: uuid.UUID, last_fetched_at: datetime) -> None:
        stamp = _dump_time(last_fetched_at)
        self._execute(
            "UPDATE feeds SET last_fetched_at = ?, updated_at = ? WHERE id = ?",
            (stamp, stamp, str(id)),
        )

    # feed follows

    def create_feed_follow(
        self,
        id: uuid.UUID,
        created_at: datetime,
        updated_at: datetime,
        user_id: uuid.UUID,
        feed_id: uuid.UUID,
    ) -> FeedFollowRow:
        self._execute(
            "INSERT INTO feed_follows (id, created_at, updated_at, user_id, feed_id) "
            "VALUES (?, ?, ?, ?, ?)",
            (str(id), _dump_time(created_at), _dump_time(updated_at), str(user_id), str(feed_id)),
        )
        return self._one(
            "SELECT ff.id, ff.created_at, ff.updated_at, ff.user_id, ff.feed_id, "
            "feeds.name, users.name FROM feed_follows ff "
            "JOIN users ON ff.user_id = users.id "
            "JOIN feeds ON ff.feed_id = feeds.id "
            "WHERE ff.id = ?",
            (str(id),),
            _follow_row,
        )

    def get_feed_follows_for_user(self, user_id: uuid.UUID) -> list[FeedFollowRow]:
        return self._many(
            "SELECT ff.id, ff.created_at, ff.updated_at, ff.user_id, ff.feed_id, "
            "f.name, u.name FROM feed_follows ff "
            "JOIN users u ON ff.user_id = u.id "
            "JOIN feeds f ON ff.feed_id = f.id "
            "WHERE ff.user_id = ?",
            (str(user_id),),
            _follow_row,
        )

    def unfollow_user(self, user_id: uuid.UUID, feed_id: uuid.UUID) -> None:
        self._execute(
            "DELETE FROM feed_follows WHERE user_id = ? AND feed_id = ?",
            (str(user_id), str(feed_id)),
        )

    # posts

    def create_post(
        self,
        id: uuid.UUID,
        created_at: datetime,
        updated_at: datetime,
        title: str,
        url: str,
        description: str,
        published_at: datetime,
        feed_id: uuid.UUID,
    ) -> Post:
        self._execute(
            f"INSERT INTO posts ({_POST_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(id),
                _dump_time(created_at),
                _dump_time(updated_at),
                title,
                url,
                description,
                _dump_time(published_at),
                str(feed_id),
            ),
        )
        return self._one(f"SELECT {_POST_COLUMNS} FROM posts WHERE id = ?", (str(id),), _post)

    def get_posts_for_user(self, user_id: uuid.UUID, limit: int) -> list[Post]:
        """Return the newest posts from feeds the user follows."""
        if limit < 0:
            raise ValueError("LIMIT must not be negative")
        columns = ", ".join(f"posts.{name.strip()}" for name in _POST_COLUMNS.split(","))
        return self._many(
            f"SELECT {columns} FROM posts "
            "JOIN feed_follows ON feed_follows.feed_id = posts.feed_id "
            "WHERE feed_follows.user_id = ? "
            "ORDER BY posts.published_at DESC LIMIT ?",
            (str(user_id), limit),
            _post,
        )


def connect(path: str | Path) -> Queries:
    """Open the SQLite database at ``path`` in autocommit mode."""
    conn = sqlite3.connect(str(path), isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    return Queries(conn)