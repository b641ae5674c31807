#!/usr/bin/env python3
"""hosts-writer - edit a hosts file from the command line

Commands:

    add IP HOST [HOST ...]        Add hostnames to the record for IP
    remove IP HOST [HOST ...]     Remove hostnames from IP ("*" removes the record)
    remove-host HOST [HOST ...]   Remove hostnames from every record
    apply [--watch]               Apply the entries of a YAML config file

Environment variables:

    HOSTS_FILE             Hosts file to edit (default: /etc/hosts, or the
                           Windows drivers/etc/hosts path)
    HOSTS_CONFIG_PATH      YAML config file or directory of *.yaml files used
                           by `apply` (default: /config/hosts.yaml)
    HOSTS_ATOMIC_WRITES    Write via temp file + rename (default: true)
    HOSTS_EOL              "lf" or "crlf" (default: platform convention)
    POLL_INTERVAL_SECONDS  Poll interval for `apply --watch` (default: 60)
    LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from hosts_writer.config import (
    DEFAULT_HOSTS,
    HostsDocument,
    _parse_bool,
    _parse_eol,
    find_config_files,
    get_config_files_mtimes,
    load_config,
)
from hosts_writer.errors import HostsError
from hosts_writer.hosts import WILDCARD_TOKEN, Hosts

# =============================================================================
# Configuration
# =============================================================================

HOSTS_FILE = os.getenv("HOSTS_FILE", DEFAULT_HOSTS)
HOSTS_CONFIG_PATH = os.getenv("HOSTS_CONFIG_PATH", "/config/hosts.yaml")
HOSTS_ATOMIC_WRITES = _parse_bool(os.getenv("HOSTS_ATOMIC_WRITES"), default=True)
HOSTS_EOL = os.getenv("HOSTS_EOL", "").strip()
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "60"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Engine Setup
# =============================================================================


def engine_options(hosts_file: Optional[str], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Merge env defaults, config-file options and the command line."""
    options: Dict[str, Any] = {"hosts_file": HOSTS_FILE, "atomic_writes": HOSTS_ATOMIC_WRITES}
    if HOSTS_EOL:
        options["eol"] = _parse_eol(HOSTS_EOL)
    options.update(overrides)
    if hosts_file:
        options["hosts_file"] = hosts_file
    # The CLI flushes explicitly instead of waiting on the debounce timer.
    options["no_writes"] = True
    return options


def apply_document(hosts: Hosts, document: HostsDocument) -> None:
    for entry in document.entries:
        hosts.add(entry.ip, list(entry.hosts))
    for entry in document.remove:
        hosts.remove(entry.ip, WILDCARD_TOKEN if entry.hosts == WILDCARD_TOKEN else list(entry.hosts))
    for hostname in document.remove_hosts:
        hosts.remove_host(hostname)


def apply_config(config_path: str, hosts_file: Optional[str]) -> Hosts:
    document = load_config(config_path)
    hosts = Hosts(**engine_options(hosts_file, document.options))
    apply_document(hosts, document)
    hosts.flush()
    logger.info(
        f"Applied {len(document.entries)} entries, {len(document.remove)} removals, "
        f"{len(document.remove_hosts)} host removals to {hosts.config.hosts_file}"
    )
    return hosts


def watch_config(config_path: str, hosts_file: Optional[str]) -> None:
    """Re-apply the config whenever its files change."""
    logger.info(f"Config watch: enabled for {config_path}")
    logger.info(f"Poll interval: {POLL_INTERVAL_SECONDS}s")

    config_files = find_config_files(config_path)
    last_config_mtimes = get_config_files_mtimes(config_files)
    apply_config(config_path, hosts_file)

    while True:
        time.sleep(max(5, POLL_INTERVAL_SECONDS))

        current_config_files = find_config_files(config_path)
        current_mtimes = get_config_files_mtimes(current_config_files)
        if set(current_config_files) == set(config_files) and current_mtimes == last_config_mtimes:
            continue

        changed = sorted(
            set(current_config_files) ^ set(config_files)
            | {f for f in current_config_files if current_mtimes.get(f) != last_config_mtimes.get(f)}
        )
        logger.info(f"Config change detected in: {', '.join(Path(f).name for f in changed)}")

        config_files = current_config_files
        last_config_mtimes = current_mtimes

        try:
            apply_config(config_path, hosts_file)
        except HostsError as e:
            logger.error(f"Failed to apply configuration: {e}", exc_info=True)
            logger.warning("Continuing with previous hosts file")


# =============================================================================
# Main
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hosts-writer", description="Edit a hosts file.")
    parser.add_argument("--hosts-file", metavar="PATH", help="Hosts file to edit (overrides HOSTS_FILE)")
    commands = parser.add_subparsers(dest="command", required=True)

    add = commands.add_parser("add", help="Add hostnames to an IP record")
    add.add_argument("ip")
    add.add_argument("hosts", nargs="+")

    remove = commands.add_parser("remove", help="Remove hostnames from an IP record")
    remove.add_argument("ip")
    remove.add_argument("hosts", nargs="+", help='Hostnames, or "*" for the whole record')

    remove_host = commands.add_parser("remove-host", help="Remove hostnames from every record")
    remove_host.add_argument("hosts", nargs="+")

    apply = commands.add_parser("apply", help="Apply a YAML config file")
    apply.add_argument("--config", default=HOSTS_CONFIG_PATH, help="Config file or directory")
    apply.add_argument("--watch", action="store_true", help="Re-apply when the config changes")

    return parser


def run(args: argparse.Namespace) -> None:
    if args.command == "apply":
        if args.watch:
            watch_config(args.config, args.hosts_file)
        else:
            apply_config(args.config, args.hosts_file)
        return

    hosts = Hosts(**engine_options(args.hosts_file, {}))
    if args.command == "add":
        hosts.add(args.ip, args.hosts)
    elif args.command == "remove":
        hosts.remove(args.ip, WILDCARD_TOKEN if WILDCARD_TOKEN in args.hosts else args.hosts)
    else:
        for hostname in args.hosts:
            hosts.remove_host(hostname)
    hosts.flush()


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        run(args)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except HostsError as e:
        logger.error(f"hosts-writer {args.command} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
