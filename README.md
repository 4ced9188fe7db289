# gator

gator is a small RSS feed aggregator library. It keeps users, feeds, feed
follows and posts in a local SQLite database, downloads and parses RSS feeds
over HTTP, and provides command handlers for registering users, adding and
following feeds, scraping them on an interval and browsing the newest posts.

It uses only the Python standard library.

## Installing

```
pip install .
```

## Configuration (`gator.config`)

Settings live in a JSON file, by default `.gatorconfig.json` in your home
directory, with two keys:

```json
{"db_url": "gator.db", "current_user_name": ""}
```

- `config_path()` returns the default location of that file.
- `read(path)` loads a file into a `Config` (`path` may be omitted to use the
  default location). Missing keys stay empty strings; a file that is not a
  JSON object raises `ValueError`.
- `Config.write(path)` saves the settings to `path`, or to the file it was
  read from, or to the default location.
- `Config.set_user(name)` records `name` as the current user and saves.

`db_url` is used as the path of the SQLite database file.

## The database (`gator.database`)

`connect(path)` opens the SQLite database at `path` (in autocommit mode,
with foreign keys enforced) and returns a `Queries` object, which can also be
used as a context manager. Call `create_schema()` once to create the tables.

`Queries` has one method per query:

- users: `create_user`, `get_user` (by name), `get_user_by_id`, `get_users`,
  `reset_users` (deletes every user, and with them their feeds, follows and
  posts);
- feeds: `create_feed`, `get_feed_by_url`, `get_next_feed_to_fetch` (a feed
  never fetched first, then the one fetched longest ago),
  `list_feeds_with_users`, `mark_feed_fetched`;
- follows: `create_feed_follow`, `get_feed_follows_for_user`,
  `unfollow_user`;
- posts: `create_post`, `get_posts_for_user` (newest first, up to `limit`).

Results are frozen dataclasses: `User`, `Feed`, `FeedFollowRow`,
`FeedWithUser` and `Post` (`FeedFollow` describes a bare follow record).
Timestamps are stored as ISO 8601 text, aware times converted to UTC. A
lookup that finds nothing raises `NoRowsError`; an insert that breaks a
uniqueness rule (user name, feed URL, post URL, a user following the same
feed twice) raises `DuplicateKeyError`.

## Feeds (`gator.rss`)

`fetch_feed(url, timeout)` downloads a feed with the `User-Agent` `gator`
and returns an `RSSFeed` holding its title, link, description and a list of
`RSSItem`s (title, link, description, pub_date). `parse_feed(data)` does the
same for a document already in hand. HTML entities in titles and
descriptions are unescaped. Network failures, HTTP status codes above 299
and malformed XML raise `FeedError`.

## Commands (`gator.commands`)

Register handlers on a `Commands` object and run a `Command` (a name and a
list of arguments) against a `State`, which holds the database, the
configuration, and the function used to download feeds (`fetch_feed` unless
you pass another):

```python
from gator.commands import (
    Command, Commands, State, logged_in,
    handler_register, handler_login, handler_addfeed, handler_browse,
)
from gator.config import read
from gator.database import connect

cfg = read()
db = connect(cfg.db_url)
db.create_schema()

commands = Commands()
commands.register("register", handler_register)
commands.register("login", handler_login)
commands.register("addfeed", logged_in(handler_addfeed))
commands.register("browse", logged_in(handler_browse))

state = State(db=db, cfg=cfg)
commands.run(state, Command("register", ["alice"]))
commands.run(state, Command("addfeed", ["Example", "https://example.com/rss.xml"]))
commands.run(state, Command("browse", ["5"]))
```

`handler_login` and `handler_register` take `(state, cmd)`. The others take
`(state, cmd, user)` and are meant to be wrapped in `logged_in`, which looks
up the current user and raises when nobody is logged in:

- `handler_reset`: delete all users.
- `handler_users`: list users, marking the current one.
- `handler_addfeed <name> <url>`: add a feed and follow it.
- `handler_feeds`: list every feed with the user who added it.
- `handler_follow <url>`, `handler_unfollow <url>`, `handler_following`.
- `handler_scrape_feeds`: fetch the feed due next and store its posts;
  items with unparseable dates or failing inserts are logged and skipped,
  duplicates are skipped silently.
- `handler_agg <duration>`: scrape one feed every interval, forever. The
  interval is written like `10s`, `1m30s` or `1.5h`.
- `handler_browse [limit]`: show the newest posts from followed feeds
  (default limit 2).

Handlers print their results to standard output. Unknown commands and
failures raise `CommandError`. `parse_time(text)` (RFC 1123, with a zone name
or a numeric offset, or RFC 3339) and `parse_duration(text)` are available on
their own.

## What it does not do

gator is a library; it does not install a command-line program. To use it
from a shell, write a small script that reads the arguments, registers the
handlers you want and calls `Commands.run`, as in the example above. It
stores data only in a local SQLite file, not in a database server.

## Running the tests

```
pip install .[test]
pytest
```