"""Engine options and YAML configuration loading.

A configuration file is a YAML mapping with any of these sections::

    options:
      hosts_file: /etc/hosts
      atomic_writes: true
      debounce_time: 0.5
    entries:
      - ip: 10.0.0.5
        hosts: [app.test, api.test]
    remove:
      - ip: 10.0.0.9
        hosts: "*"
    remove_hosts:
      - old.test

``HOSTS_CONFIG_PATH`` may point at a single file or at a directory, in which
case every ``*.yaml`` file (excluding ``.template`` files) is loaded in name
order and the sections are concatenated.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hosts_writer.errors import ConfigError, InvalidArgument

logger = logging.getLogger(__name__)

WINDOWS = sys.platform == "win32"
DEFAULT_EOL = "\r\n" if WINDOWS else "\n"
DEFAULT_HOSTS = "C:/Windows/System32/drivers/etc/hosts" if WINDOWS else "/etc/hosts"

EOL_NAMES = {"lf": "\n", "crlf": "\r\n"}


# =============================================================================
# Engine Options
# =============================================================================


class HostsConfig(BaseModel):
    """Options recognised by the ``Hosts`` engine.

    Inputs:
      - atomic_writes: Write through a temp file and rename it over the target.
      - debounce_time: Seconds of quiet after the last mutation before a cycle.
      - hosts_file: Path of the hosts file.
      - no_writes: Never schedule cycles; only an explicit flush writes.
      - eol: Line separator used for the whole output document.
    """

    model_config = ConfigDict(extra="forbid")

    atomic_writes: bool = True
    debounce_time: float = Field(default=0.5, ge=0)
    hosts_file: str = DEFAULT_HOSTS
    no_writes: bool = False
    eol: Literal["\n", "\r\n"] = DEFAULT_EOL


def build_config(options: Dict[str, Any]) -> HostsConfig:
    """Validate keyword options, raising InvalidArgument on any bad key or value."""
    for key in options:
        if key not in HostsConfig.model_fields:
            raise InvalidArgument(f"No such config option: {key}")
    try:
        return HostsConfig(**options)
    except ValidationError as e:
        raise InvalidArgument(f"Invalid config: {e}") from e


# =============================================================================
# File Watching Utilities
# =============================================================================


def get_config_file_mtime(config_path: str) -> float:
    """Get modification time of config file, returns 0 if file doesn't exist."""
    try:
        return os.path.getmtime(config_path) if os.path.exists(config_path) else 0.0
    except OSError:
        return 0.0


def find_config_files(config_path: str) -> List[str]:
    """Find all .yaml config files in directory or return single file."""
    path = Path(config_path)

    if path.is_file():
        return [str(path)]

    if path.is_dir():
        yaml_files = sorted(path.glob("*.yaml"))
        return [str(f) for f in yaml_files if not f.name.endswith(".template")]

    return []


def get_config_files_mtimes(config_files: List[str]) -> Dict[str, float]:
    """Get modification times for all config files."""
    return {f: get_config_file_mtime(f) for f in config_files}


# =============================================================================
# Declarative Entries
# =============================================================================


@dataclass(frozen=True)
class HostsEntry:
    """One IP and the hostnames an entry adds or removes.

    ``hosts`` is either a tuple of hostnames or the wildcard token ``"*"``.
    """

    ip: str
    hosts: Union[Tuple[str, ...], str]


@dataclass
class HostsDocument:
    options: Dict[str, Any] = field(default_factory=dict)
    entries: List[HostsEntry] = field(default_factory=list)
    remove: List[HostsEntry] = field(default_factory=list)
    remove_hosts: List[str] = field(default_factory=list)

    def extend(self, other: "HostsDocument") -> None:
        self.options.update(other.options)
        self.entries.extend(other.entries)
        self.remove.extend(other.remove)
        self.remove_hosts.extend(other.remove_hosts)


def _parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_eol(value: str) -> str:
    eol = EOL_NAMES.get(value.strip().lower())
    if eol is None:
        raise InvalidArgument(f"Unsupported EOL {value!r}. Use 'lf' or 'crlf'")
    return eol


def _parse_entries(raw: Any, section: str, source: str, *, allow_wildcard: bool) -> List[HostsEntry]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError(f"{source}: '{section}' must be a list")

    entries: List[HostsEntry] = []
    for item in raw:
        if not isinstance(item, dict) or not isinstance(item.get("ip"), str):
            raise ConfigError(f"{source}: malformed {section} item: {item!r}")
        hosts = item.get("hosts")
        if allow_wildcard and hosts == "*":
            entries.append(HostsEntry(ip=item["ip"], hosts="*"))
            continue
        if isinstance(hosts, str):
            hosts = [hosts]
        if not isinstance(hosts, list) or not all(isinstance(h, str) for h in hosts):
            raise ConfigError(f"{source}: 'hosts' for {item['ip']} must be a string or list of strings")
        entries.append(HostsEntry(ip=item["ip"], hosts=tuple(hosts)))
    return entries


def parse_document(data: Any, source: str = "<config>") -> HostsDocument:
    """Convert a loaded YAML mapping into a HostsDocument."""
    if data is None:
        return HostsDocument()
    if not isinstance(data, dict):
        raise ConfigError(f"{source}: top level must be a mapping")

    unknown = set(data) - {"options", "entries", "remove", "remove_hosts"}
    if unknown:
        raise ConfigError(f"{source}: unknown section(s): {', '.join(sorted(unknown))}")

    options = data.get("options") or {}
    if not isinstance(options, dict):
        raise ConfigError(f"{source}: 'options' must be a mapping")

    remove_hosts = data.get("remove_hosts") or []
    if not isinstance(remove_hosts, list) or not all(isinstance(h, str) for h in remove_hosts):
        raise ConfigError(f"{source}: 'remove_hosts' must be a list of strings")

    return HostsDocument(
        options=dict(options),
        entries=_parse_entries(data.get("entries"), "entries", source, allow_wildcard=False),
        remove=_parse_entries(data.get("remove"), "remove", source, allow_wildcard=True),
        remove_hosts=list(remove_hosts),
    )


def load_config(config_path: str) -> HostsDocument:
    """Load and merge every YAML file found at ``config_path``."""
    config_files = find_config_files(config_path)
    if not config_files:
        raise ConfigError(f"No config files found at {config_path}")

    document = HostsDocument()
    for config_file in config_files:
        try:
            data = yaml.safe_load(Path(config_file).read_text("utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config file {config_file}: {e}") from e
        document.extend(parse_document(data, config_file))
        logger.debug(f"Loaded config file {config_file}")

    return document
