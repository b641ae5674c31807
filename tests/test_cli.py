"""Tests for the hosts-writer command line."""

from pathlib import Path

import pytest

from hosts_writer.cli import build_parser, engine_options, main

HOSTS = "127.0.0.1 localhost\n10.0.0.1 a.test  b.test\n# trailing\n"


@pytest.fixture
def hosts_file(tmp_path: Path) -> Path:
    path = tmp_path / "hosts"
    path.write_text(HOSTS, encoding="utf-8")
    return path


def run_cli(hosts_file: Path, *argv: str) -> str:
    main(["--hosts-file", str(hosts_file), *argv])
    return hosts_file.read_text(encoding="utf-8")


# =============================================================================
# Commands
# =============================================================================


def test_add_command(hosts_file: Path) -> None:
    result = run_cli(hosts_file, "add", "10.0.0.5", "app.test", "api.test")

    assert result == (
        "127.0.0.1 localhost\n10.0.0.1 a.test  b.test\n10.0.0.5 app.test api.test\n# trailing\n"
    )


def test_add_to_existing_record(hosts_file: Path) -> None:
    result = run_cli(hosts_file, "add", "10.0.0.1", "c.test")

    assert "10.0.0.1 a.test  b.test c.test\n" in result


def test_remove_command(hosts_file: Path) -> None:
    result = run_cli(hosts_file, "remove", "10.0.0.1", "b.test")

    assert result == "127.0.0.1 localhost\n10.0.0.1 a.test\n# trailing\n"


def test_remove_wildcard_drops_record(hosts_file: Path) -> None:
    result = run_cli(hosts_file, "remove", "10.0.0.1", "*")

    assert result == "127.0.0.1 localhost\n# trailing\n"


def test_remove_host_command(hosts_file: Path) -> None:
    result = run_cli(hosts_file, "remove-host", "a.test", "localhost")

    assert result == "10.0.0.1 b.test\n# trailing\n"


def test_apply_command(hosts_file: Path, tmp_path: Path) -> None:
    config_file = tmp_path / "hosts.yaml"
    config_file.write_text(
        "entries:\n"
        "  - ip: 10.0.0.5\n"
        "    hosts: [app.test]\n"
        "remove:\n"
        "  - ip: 10.0.0.1\n"
        '    hosts: "*"\n',
        encoding="utf-8",
    )

    result = run_cli(hosts_file, "apply", "--config", str(config_file))

    assert result == "127.0.0.1 localhost\n10.0.0.5 app.test\n# trailing\n"


def test_apply_is_repeatable(hosts_file: Path, tmp_path: Path) -> None:
    config_file = tmp_path / "hosts.yaml"
    config_file.write_text("entries:\n  - ip: 10.0.0.1\n    hosts: c.test\n", encoding="utf-8")

    first = run_cli(hosts_file, "apply", "--config", str(config_file))
    second = run_cli(hosts_file, "apply", "--config", str(config_file))

    assert first == second


# =============================================================================
# Failures
# =============================================================================


def test_missing_hosts_file_exits_nonzero(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--hosts-file", str(tmp_path / "missing"), "add", "10.0.0.5", "a.test"])

    assert excinfo.value.code == 1


def test_bad_config_exits_nonzero(hosts_file: Path, tmp_path: Path) -> None:
    config_file = tmp_path / "hosts.yaml"
    config_file.write_text("options:\n  bogus: 1\n", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        run_cli(hosts_file, "apply", "--config", str(config_file))

    assert excinfo.value.code == 1
    assert hosts_file.read_text(encoding="utf-8") == HOSTS


def test_command_required() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


# =============================================================================
# Option Merging
# =============================================================================


def test_engine_options_command_line_wins() -> None:
    options = engine_options("/tmp/cli-hosts", {"hosts_file": "/tmp/yaml-hosts", "debounce_time": 2})

    assert options["hosts_file"] == "/tmp/cli-hosts"
    assert options["debounce_time"] == 2
    assert options["no_writes"] is True


def test_engine_options_config_file_overrides_env_default() -> None:
    options = engine_options(None, {"hosts_file": "/tmp/yaml-hosts"})

    assert options["hosts_file"] == "/tmp/yaml-hosts"
