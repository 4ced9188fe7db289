from datetime import datetime, timedelta, timezone

import pytest

from gator.commands import (
    Command,
    CommandError,
    Commands,
    State,
    handler_addfeed,
    handler_agg,
    handler_browse,
    handler_feeds,
    handler_follow,
    handler_following,
    handler_login,
    handler_register,
    handler_reset,
    handler_scrape_feeds,
    handler_unfollow,
    handler_users,
    logged_in,
    parse_duration,
    parse_time,
)
from gator.config import Config, read
from gator.database import connect
from gator.rss import FeedError, RSSFeed, RSSItem

URL = "https://example.com/rss"


@pytest.fixture
def state(tmp_path):
    db = connect(":memory:")
    db.create_schema()
    cfg = Config(path=tmp_path / "cfg.json")
    yield State(db, cfg)
    db.close()


def _commands():
    cmds = Commands()
    cmds.register("login", handler_login)
    cmds.register("register", handler_register)
    for name, h in [
        ("reset", handler_reset), ("users", handler_users), ("addfeed", handler_addfeed),
        ("feeds", handler_feeds), ("follow", handler_follow),
        ("following", handler_following), ("unfollow", handler_unfollow),
        ("browse", handler_browse), ("scrape", handler_scrape_feeds), ("agg", handler_agg),
    ]:
        cmds.register(name, logged_in(h))
    return cmds


def run(state, name, *args):
    return _commands().run(state, Command(name, list(args)))


def test_parse_time_formats():
    expected = datetime(2006, 1, 2, 15, 4, 5, tzinfo=timezone.utc)
    assert parse_time("Mon, 02 Jan 2006 15:04:05 GMT") == expected
    assert parse_time("Mon, 02 Jan 2006 15:04:05 +0000") == expected
    assert parse_time("2006-01-02T15:04:05Z") == expected


def test_parse_time_invalid():
    with pytest.raises(ValueError):
        parse_time("yesterday")


def test_parse_duration():
    assert parse_duration("1h30m") == timedelta(minutes=90)
    assert parse_duration("10s") == timedelta(seconds=10)
    assert parse_duration("1.5s") == timedelta(milliseconds=1500)
    with pytest.raises(ValueError):
        parse_duration("10")


def test_unknown_command(state):
    with pytest.raises(CommandError, match="unknown command: nope"):
        run(state, "nope")


def test_register_and_login(state, capsys):
    run(state, "register", "alice")
    assert state.cfg.current_user_name == "alice"
    assert read(state.cfg.path).current_user_name == "alice"
    with pytest.raises(CommandError, match="user already exists"):
        run(state, "register", "alice")
    run(state, "register", "bob")
    run(state, "login", "alice")
    assert "username set to: alice" in capsys.readouterr().out


def test_login_errors(state):
    with pytest.raises(CommandError, match="username required"):
        run(state, "login")
    with pytest.raises(CommandError, match="user does not exist"):
        run(state, "login", "ghost")


def test_logged_in_requires_user(state):
    with pytest.raises(CommandError, match="no user logged in"):
        run(state, "users")


def test_users_marks_current(state, capsys):
    run(state, "register", "alice")
    run(state, "register", "bob")
    capsys.readouterr()
    run(state, "users")
    assert capsys.readouterr().out.splitlines() == ["* alice", "* bob (current)"]


def test_feeds_follow_unfollow(state, capsys):
    run(state, "register", "alice")
    run(state, "addfeed", "Blog", URL)
    run(state, "register", "bob")
    run(state, "follow", URL)
    with pytest.raises(CommandError, match="could not follow feed"):
        run(state, "follow", URL)
    capsys.readouterr()
    run(state, "following")
    assert capsys.readouterr().out == "Name: Blog\n"
    run(state, "feeds")
    assert "User: alice" in capsys.readouterr().out
    run(state, "unfollow", URL)
    run(state, "following")
    assert "You are not following any feeds." in capsys.readouterr().out


def test_reset_clears_users(state):
    run(state, "register", "alice")
    run(state, "reset")
    assert state.db.get_users() == []


def test_scrape_and_browse(state, capsys):
    items = [
        RSSItem("Old", "https://example.com/a", "d", "Mon, 02 Jan 2006 15:04:05 GMT"),
        RSSItem("New", "https://example.com/b", "d", "2007-01-02T15:04:05Z"),
        RSSItem("Bad", "https://example.com/c", "d", "never"),
    ]
    state.fetch = lambda url: RSSFeed(items=items)
    run(state, "register", "alice")
    run(state, "addfeed", "Blog", URL)
    run(state, "scrape")
    run(state, "scrape")  # duplicates are skipped
    user = state.db.get_user("alice")
    posts = state.db.get_posts_for_user(user.id, 10)
    assert [p.title for p in posts] == ["New", "Old"]
    capsys.readouterr()
    run(state, "browse", "1")
    out = capsys.readouterr().out
    assert "Title: New" in out and "Title: Old" not in out


def test_scrape_fetch_failure(state):
    def fail(url):
        raise FeedError("boom")

    state.fetch = fail
    run(state, "register", "alice")
    run(state, "addfeed", "Blog", URL)
    with pytest.raises(CommandError, match="failed to fetch RSS feed"):
        run(state, "scrape")
    assert state.db.get_feed_by_url(URL).last_fetched_at is not None


def test_browse_errors(state, capsys):
    run(state, "register", "alice")
    with pytest.raises(CommandError, match="invalid limit"):
        run(state, "browse", "many")
    capsys.readouterr()
    run(state, "browse")
    assert capsys.readouterr().out == "no posts found.\n"


def test_agg_argument_errors(state):
    run(state, "register", "alice")
    with pytest.raises(CommandError, match="usage: agg"):
        run(state, "agg")
    with pytest.raises(CommandError, match="invalid duration"):
        run(state, "agg", "soon")