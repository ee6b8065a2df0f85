from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from gitglass.errors import ConfigError


CONFIG_FILENAME = "gitglass.toml"
CONFIG_ENV = "GITGLASS_CONFIG"
DEFAULT_HEAD = "main"
DEFAULT_MIRRORS_DIR = "repos"
DEFAULT_ADDRESS = "127.0.0.1:3000"
STATE_DB_FILENAME = ".gitglass_state.db"

_SLUG_RE = re.compile(r"^[A-Za-z0-9_\-][A-Za-z0-9_.\-]*$")


@dataclass(slots=True, frozen=True)
class RepoConfig:
    slug: str
    url: str
    title: str
    head: str = DEFAULT_HEAD


@dataclass(slots=True)
class GitglassConfig:
    address: str = DEFAULT_ADDRESS
    mirrors_dir: str = DEFAULT_MIRRORS_DIR
    repos: dict[str, RepoConfig] = field(default_factory=dict)
    base_dir: str = "."

    @property
    def mirrors_path(self) -> Path:
        path = Path(self.mirrors_dir).expanduser()
        if not path.is_absolute():
            path = Path(self.base_dir) / path
        return path.resolve()

    @property
    def state_db_path(self) -> Path:
        return self.mirrors_path / STATE_DB_FILENAME

    def mirror_path(self, slug: str) -> Path:
        return self.mirrors_path / f"{slug}.git"

    def lock_path(self, slug: str) -> Path:
        return self.mirrors_path / f"{slug}.git.lock"

    @property
    def host(self) -> str:
        return split_address(self.address)[0]

    @property
    def port(self) -> int:
        return split_address(self.address)[1]


def config_path(explicit: str | Path | None = None) -> Path:
    if explicit:
        return Path(explicit).expanduser().resolve()
    env_value = os.getenv(CONFIG_ENV, "").strip()
    if env_value:
        return Path(env_value).expanduser().resolve()
    return Path.cwd().resolve() / CONFIG_FILENAME


def load_config(path: str | Path | None = None) -> GitglassConfig:
    resolved = config_path(path)
    if not resolved.exists():
        raise FileNotFoundError(
            f"Config file not found: {resolved}. Create {CONFIG_FILENAME} or pass --config."
        )

    with resolved.open("rb") as fh:
        try:
            data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {resolved}: {exc}") from exc

    return parse_config(data, base_dir=resolved.parent)


def parse_config(data: dict, *, base_dir: Path | None = None) -> GitglassConfig:
    server = data.get("server") or {}
    if not isinstance(server, dict):
        raise ConfigError("`server` must be a table")

    raw_repos = data.get("repos") or {}
    if not isinstance(raw_repos, dict):
        raise ConfigError("`repos` must be a table of repository tables")

    repos: dict[str, RepoConfig] = {}
    for slug, entry in raw_repos.items():
        repos[slug] = _parse_repo(slug, entry)

    address = str(server.get("address", DEFAULT_ADDRESS))
    split_address(address)

    return GitglassConfig(
        address=address,
        mirrors_dir=str(data.get("mirrors_dir", DEFAULT_MIRRORS_DIR)),
        repos=repos,
        base_dir=str(base_dir or Path.cwd()),
    )


def _parse_repo(slug: str, entry: object) -> RepoConfig:
    if not _SLUG_RE.match(slug):
        raise ConfigError(f"Invalid repository slug: {slug!r}")
    if not isinstance(entry, dict):
        raise ConfigError(f"repos.{slug} must be a table")
    try:
        url = str(entry["url"]).strip()
        title = str(entry["title"])
    except KeyError as exc:
        raise ConfigError(f"repos.{slug} is missing required key {exc.args[0]!r}") from exc
    if not url:
        raise ConfigError(f"repos.{slug}.url must not be empty")

    head = str(entry.get("head", DEFAULT_HEAD)).strip()
    if head.startswith("refs/heads/"):
        head = head[len("refs/heads/"):]
    if not head:
        raise ConfigError(f"repos.{slug}.head must not be empty")
    return RepoConfig(slug=slug, url=url, title=title, head=head)


def split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.strip().rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"Invalid listen address {address!r}; expected host:port")
    return (host.strip("[]") or "0.0.0.0"), int(port)
