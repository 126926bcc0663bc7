"""
Module for loading the servers to expose from a config file.

Every section in the config file describes one server and the section name is the name
of the server's directory in the file system:

    [production]
    hostname = sql01.example.com
    username = monitor
    password = secret
    version = 16
    customQueriesPath = ~/queries/production
"""

from __future__ import annotations

from configparser import ConfigParser, Error as ConfigParserError, SectionProxy
import dataclasses
from dataclasses import dataclass, field
import os
from typing import Callable, Dict, Iterable, Iterator, Mapping, Optional

import semver

from dbfs.constants import CUSTOM_QUERY_FOLDER_NAME
from dbfs.logger import log
from dbfs.views import parse_version


class ConfigError(Exception):
    """Raised when the config file can't be used to mount anything."""


@dataclass(frozen=True)
class ServerEntry:
    """Connection details of a server along with its custom query directory."""

    name: str
    hostname: str
    username: str
    password: Optional[str]
    version: semver.VersionInfo
    custom_queries_path: Optional[str] = None

    @staticmethod
    def load(section: SectionProxy) -> ServerEntry:
        """
        Load a server from its section within a config file.

        Raises KeyError if a required variable is missing and ValueError if the version
        can't be parsed.
        """
        custom_queries_path = section.get("customQueriesPath")

        if custom_queries_path:
            custom_queries_path = os.path.expanduser(custom_queries_path)
        else:
            custom_queries_path = None

        return ServerEntry(
            name=section.name,
            hostname=section["hostname"],
            username=section["username"],
            password=section.get("password"),
            version=parse_version(section["version"]),
            custom_queries_path=custom_queries_path,
        )


class ServerRegistry(Mapping[str, ServerEntry]):
    """
    Immutable mapping of server names to their entries.

    The registry is built once before the file system is mounted and is then shared
    between all FUSE threads without locking.
    """

    def __init__(self, entries: Iterable[ServerEntry] = ()):
        """Instantiate the registry with a snapshot of the given entries."""
        self._entries: Dict[str, ServerEntry] = {e.name: e for e in entries}

    def __getitem__(self, name: str) -> ServerEntry:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ServerRegistry({sorted(self._entries)})"

    def lookup(self, name: str) -> Optional[ServerEntry]:
        """Return the entry of a server, or None if there is no such server."""
        return self._entries.get(name)

    def with_passwords(self, prompt: Callable[[ServerEntry], str]) -> ServerRegistry:
        """Return a copy where missing passwords are filled in by the prompt."""
        return ServerRegistry(
            e if e.password is not None else dataclasses.replace(e, password=prompt(e))
            for e in self._entries.values()
        )


@dataclass
class Config:
    """Configuration variables."""

    servers: ServerRegistry = field(default_factory=ServerRegistry)

    @staticmethod
    def load(filename: str) -> Config:
        """
        Load the servers from a config file.

        Servers with an incomplete section are skipped. A config file that can't be
        read at all is an error because there would be nothing to mount.
        """
        parser = ConfigParser(interpolation=None)

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)
        except (OSError, ConfigParserError) as e:
            raise ConfigError(f"failed to read config file {filename}: {e}") from e

        entries = []

        for name in parser.sections():
            if name == CUSTOM_QUERY_FOLDER_NAME:
                log.error(f"skipping server {name}: name is reserved")
                continue

            try:
                entries.append(ServerEntry.load(parser[name]))
            except KeyError as e:
                log.error(f"skipping server {name}: missing {e}")
            except ValueError as e:
                log.error(f"skipping server {name}: invalid version ({e})")

        if not entries:
            raise ConfigError(f"no usable servers in config file {filename}")

        config = Config(servers=ServerRegistry(entries))

        log.info(f"loaded config: {config}")

        return config
