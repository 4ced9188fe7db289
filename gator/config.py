"""Reading and writing the user's JSON configuration file."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_FILE_NAME = ".gatorconfig.json"


def config_path() -> Path:
    """Return the location of the configuration file in the home directory."""
    return Path.home() / CONFIG_FILE_NAME


@dataclass
class Config:
    """Database location and the name of the logged-in user."""

    db_url: str = ""
    current_user_name: str = ""
    path: Path | None = field(default=None, repr=False, compare=False)

    def to_json(self) -> str:
        return json.dumps(
            {"db_url": self.db_url, "current_user_name": self.current_user_name},
            separators=(",", ":"),
        )

    def write(self, path: str | Path | None = None) -> None:
        """Save the configuration to ``path``, its own path, or the default one."""
        target = Path(path) if path is not None else (self.path or config_path())
        target.write_text(self.to_json(), encoding="utf-8")
        self.path = target

    def set_user(self, name: str) -> None:
        """Record ``name`` as the current user and save the file."""
        self.current_user_name = name
        self.write()


def read(path: str | Path | None = None) -> Config:
    """Load the configuration file; missing keys keep their empty defaults."""
    source = Path(path) if path is not None else config_path()
    data = json.loads(source.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"configuration in {source} is not a JSON object")
    return Config(
        db_url=str(data.get("db_url", "")),
        current_user_name=str(data.get("current_user_name", "")),
        path=source,
    )