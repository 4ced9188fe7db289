"""The command handlers of the feed aggregator."""

from __future__ import annotations

import logging
import re
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from gator.config import Config
from gator.database import DuplicateKeyError, NoRowsError, Queries, User
from gator.rss import FeedError, RSSFeed, fetch_feed

log = logging.getLogger(__name__)


class CommandError(Exception):
    """A command failed; the message is meant for the user."""


@dataclass
class State:
    db: Queries
    cfg: Config
    fetch: Callable[[str], RSSFeed] = fetch_feed


@dataclass
class Command:
    name: str
    args: list[str] = field(default_factory=list)


Handler = Callable[[State, Command], Any]
UserHandler = Callable[[State, Command, User], Any]


class Commands:
    """A registry of named command handlers."""

    def __init__(self) -> None:
        self.handlers: dict[str, Handler] = {}

    def register(self, name: str, handler: Handler) -> None:
        self.handlers[name] = handler

    def run(self, state: State, cmd: Command) -> Any:
        try:
            handler = self.handlers[cmd.name]
        except KeyError:
            raise CommandError(f"unknown command: {cmd.name}") from None
        return handler(state, cmd)


def logged_in(handler: UserHandler) -> Handler:
    """Wrap a handler so that it receives the logged-in user."""

    def wrapper(state: State, cmd: Command) -> Any:
        if not state.cfg.current_user_name:
            raise CommandError("no user logged in")
        try:
            user = state.db.get_user(state.cfg.current_user_name)
        except NoRowsError as exc:
            raise CommandError(f"can't find user {exc}") from exc
        return handler(state, cmd, user)

    wrapper.__name__ = getattr(handler, "__name__", "wrapper")
    wrapper.__doc__ = handler.__doc__
    return wrapper


# time parsing

_RFC1123 = re.compile(
    r"(Mon|Tue|Wed|Thu|Fri|Sat|Sun), (\d{2}) ([A-Z][a-z]{2}) (\d{4}) "
    r"(\d{2}):(\d{2}):(\d{2}) (?:([A-Z]{3,5})|([+-])(\d{2})(\d{2}))"
)
_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|([+-])(\d{2}):(\d{2}))"
)
_MONTHS = {m: i for i, m in enumerate(
    ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"], 1
)}


def _offset(sign: str, hours: str, minutes: str) -> timezone:
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return timezone(-delta if sign == "-" else delta)


def _parse_rfc1123(text: str) -> datetime:
    m = _RFC1123.fullmatch(text)
    if m is None or m.group(3) not in _MONTHS:
        raise ValueError("not RFC 1123")
    _, day, mon, year, hh, mm, ss, _abbr, sign, oh, om = m.groups()
    tz = _offset(sign, oh, om) if sign else timezone.utc
    return datetime(int(year), _MONTHS[mon], int(day), int(hh), int(mm), int(ss), tzinfo=tz)


def _parse_rfc3339(text: str) -> datetime:
    m = _RFC3339.fullmatch(text)
    if m is None:
        raise ValueError("not RFC 3339")
    year, mon, day, hh, mm, ss, frac, zone, sign, oh, om = m.groups()
    micro = int((frac or "0")[:6].ljust(6, "0"))
    tz = timezone.utc if zone == "Z" else _offset(sign, oh, om)
    return datetime(int(year), int(mon), int(day), int(hh), int(mm), int(ss), micro, tzinfo=tz)


def parse_time(text: str) -> datetime:
    """Parse an RFC 1123, RFC 1123 with numeric zone, or RFC 3339 timestamp."""
    error: Exception | None = None
    for parser in (_parse_rfc1123, _parse_rfc3339):
        try:
            return parser(text)
        except ValueError as exc:
            error = exc
    raise ValueError(f"could not parse date {text!r}: {error}")


# durations

_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}
_DURATION_PART = re.compile(r"(\d*\.?\d*)(ns|us|µs|μs|ms|s|m|h)")


def _parse_duration_ns(text: str) -> int:
    body = text
    negative = body.startswith("-")
    if body[:1] in "+-" and body:
        body = body[1:]
    if body == "0":
        return 0
    if not body:
        raise ValueError(f"invalid duration {text!r}")
    total = Decimal(0)
    pos = 0
    while pos < len(body):
        m = _DURATION_PART.match(body, pos)
        if m is None or m.group(1) in ("", "."):
            raise ValueError(f"invalid duration {text!r}")
        try:
            total += Decimal(m.group(1)) * _UNITS[m.group(2)]
        except InvalidOperation as exc:
            raise ValueError(f"invalid duration {text!r}") from exc
        pos = m.end()
    ns = int(total)
    return -ns if negative else ns


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``1h30m``, ``10s`` or ``1.5m``."""
    return timedelta(microseconds=_parse_duration_ns(text) / 1000)


def _fraction(value: int, size: int) -> str:
    whole, part = divmod(value, size)
    if part == 0:
        return str(whole)
    digits = f"{part:0{len(str(size)) - 1}d}".rstrip("0")
    return f"{whole}.{digits}"


def _format_duration(ns: int) -> str:
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    value = abs(ns)
    if value < _UNITS["s"]:
        unit, size = next(
            (u, s) for u, s in (("ms", 1_000_000), ("µs", 1_000), ("ns", 1)) if value >= s
        )
        return f"{sign}{_fraction(value, size)}{unit}"
    hours, rest = divmod(value, _UNITS["h"])
    minutes, rest = divmod(rest, _UNITS["m"])
    out = f"{hours}h{minutes}m" if hours else (f"{minutes}m" if minutes else "")
    return f"{sign}{out}{_fraction(rest, _UNITS['s'])}s"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# handlers

def handler_login(state: State, cmd: Command) -> None:
    if not cmd.args:
        raise CommandError("username required")
    name = cmd.args[0]
    try:
        state.db.get_user(name)
    except NoRowsError:
        raise CommandError("user does not exist") from None
    try:
        state.cfg.set_user(name)
    except OSError as exc:
        raise CommandError(f"can't set the username: {exc}") from exc
    print(f"username set to: {name}")


def handler_register(state: State, cmd: Command) -> None:
    if not cmd.args:
        raise CommandError("username required")
    name = cmd.args[0]
    now = _now()
    try:
        state.db.get_user(name)
    except NoRowsError:
        pass
    else:
        raise CommandError("user already exists")
    try:
        user = state.db.create_user(uuid.uuid4(), now, now, name)
    except (DuplicateKeyError, sqlite3.Error) as exc:
        raise CommandError(f"create user: {exc}") from exc
    try:
        state.cfg.set_user(name)
    except OSError as exc:
        raise CommandError(f"failed to set current user: {exc}") from exc
    print(f"user created: id={user.id}, name={user.name}")


def handler_reset(state: State, cmd: Command, user: User) -> None:
    try:
        state.db.reset_users()
    except sqlite3.Error as exc:
        raise CommandError(f"failed to reset database {exc}") from exc
    print("reset complete")


def handler_users(state: State, cmd: Command, user: User) -> None:
    try:
        users = state.db.get_users()
    except sqlite3.Error as exc:
        raise CommandError(f"failed to check users {exc}") from exc
    for each in users:
        if each.name == state.cfg.current_user_name:
            print(f"* {each.name} (current)")
        else:
            print(f"* {each.name}")


def handler_agg(state: State, cmd: Command, user: User) -> None:
    """Scrape one feed per interval, forever."""
    if not cmd.args:
        raise CommandError("usage: agg <duration>")
    try:
        ns = _parse_duration_ns(cmd.args[0])
    except ValueError as exc:
        raise CommandError(f"invalid duration: {exc}") from exc
    if ns <= 0:
        raise CommandError("invalid duration: non-positive interval")
    print(f"Collecting feeds every {_format_duration(ns)}")
    interval = ns / 1e9
    next_tick = time.monotonic() + interval
    while True:
        try:
            handler_scrape_feeds(state, cmd, user)
        except CommandError as exc:
            print(f"Error scraping: {exc}")
        time.sleep(max(0.0, next_tick - time.monotonic()))
        next_tick += interval


def handler_addfeed(state: State, cmd: Command, user: User) -> None:
    if len(cmd.args) < 2:
        raise CommandError("usage: addfeed <name> <url>")
    name, url = cmd.args[0], cmd.args[1]
    if not state.cfg.current_user_name:
        raise CommandError("no user logged in")
    try:
        user = state.db.get_user(state.cfg.current_user_name)
    except NoRowsError as exc:
        raise CommandError(f"user not found: {exc}") from exc
    try:
        feed = state.db.create_feed(uuid.uuid4(), _now(), _now(), name, url, user.id)
    except (DuplicateKeyError, sqlite3.Error) as exc:
        raise CommandError(f"can't create feed database: {exc}") from exc
    print(feed)
    try:
        follow = state.db.create_feed_follow(uuid.uuid4(), _now(), _now(), user.id, feed.id)
    except (DuplicateKeyError, sqlite3.Error) as exc:
        raise CommandError(f"could not follow feed: {exc}") from exc
    print(f'Feed "{follow.feed_name}" successfully added and followed by "{follow.user_name}"')


def handler_feeds(state: State, cmd: Command, user: User) -> None:
    try:
        feeds = state.db.list_feeds_with_users()
    except sqlite3.Error as exc:
        raise CommandError(f"can't read the feed {exc}") from exc
    for feed in feeds:
        print(f"Name: {feed.name}\nURL: {feed.url}\nUser: {feed.user_name}\n")


def handler_follow(state: State, cmd: Command, user: User) -> None:
    if not cmd.args:
        raise CommandError("usage: follow <url>")
    try:
        user = state.db.get_user(state.cfg.current_user_name)
    except NoRowsError as exc:
        raise CommandError(f"user not found: {exc}") from exc
    try:
        feed = state.db.get_feed_by_url(cmd.args[0])
    except NoRowsError as exc:
        raise CommandError(f"feed not found: {exc}") from exc
    try:
        follow = state.db.create_feed_follow(uuid.uuid4(), _now(), _now(), user.id, feed.id)
    except (DuplicateKeyError, sqlite3.Error) as exc:
        raise CommandError(f"could not follow feed: {exc}") from exc
    print(f'Following to "{follow.feed_name}" as "{follow.user_name}"')


def handler_following(state: State, cmd: Command, user: User) -> None:
    try:
        user = state.db.get_user(state.cfg.current_user_name)
    except NoRowsError as exc:
        raise CommandError(f"user not found: {exc}") from exc
    try:
        follows = state.db.get_feed_follows_for_user(user.id)
    except sqlite3.Error as exc:
        raise CommandError(f"failed to get subscriptions: {exc}") from exc
    if not follows:
        print("You are not following any feeds.")
        return
    for follow in follows:
        print(f"Name: {follow.feed_name}")


def handler_unfollow(state: State, cmd: Command, user: User) -> None:
    if not cmd.args:
        raise CommandError("usage: unfollow <url>")
    try:
        feed = state.db.get_feed_by_url(cmd.args[0])
    except NoRowsError as exc:
        raise CommandError(f"can't find the feed {exc}") from exc
    try:
        state.db.unfollow_user(user.id, feed.id)
    except sqlite3.Error as exc:
        raise CommandError(f"can't unfollow {exc}") from exc
    print(f'Unfollowed from "{feed.name}"')


def handler_scrape_feeds(state: State, cmd: Command, user: User) -> None:
    """Fetch the feed due next and store its new posts."""
    try:
        feed = state.db.get_next_feed_to_fetch()
    except NoRowsError as exc:
        raise CommandError(f"can't find feed to fetch {exc}") from exc
    try:
        state.db.mark_feed_fetched(feed.id, _now())
    except sqlite3.Error as exc:
        raise CommandError(f"failed to mark feed as fetched: {exc}") from exc
    try:
        rss = state.fetch(feed.url)
    except FeedError as exc:
        raise CommandError(f"failed to fetch RSS feed: {exc}") from exc

    print(f"Fetched {len(rss.items)} posts from feed: {feed.name}")
    for item in rss.items:
        try:
            published = parse_time(item.pub_date)
        except ValueError as exc:
            log.warning("can't parse date %r: %s", item.pub_date, exc)
            continue
        try:
            state.db.create_post(
                uuid.uuid4(), _now(), _now(), item.title, item.link,
                item.description, published, feed.id,
            )
        except DuplicateKeyError:
            continue
        except sqlite3.Error as exc:
            log.warning("failed to insert post: %s", exc)


def handler_browse(state: State, cmd: Command, user: User) -> None:
    limit = 2
    if cmd.args:
        if not re.fullmatch(r"[+-]?\d+", cmd.args[0]):
            raise CommandError(f"invalid limit: {cmd.args[0]!r}")
        limit = int(cmd.args[0])
    try:
        posts = state.db.get_posts_for_user(user.id, limit)
    except (ValueError, sqlite3.Error) as exc:
        raise CommandError(f"failed to get posts: {exc}") from exc
    if not posts:
        print("no posts found.")
        return
    for post in posts:
        print(
            f"Title: {post.title}\nUrl: {post.url}\n"
            f"Published: {post.published_at}\nFeed: {post.feed_id}\n"
        )