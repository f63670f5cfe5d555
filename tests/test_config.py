"""Tests for configuration loading and priority logic."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from watchcat.config import LaunchConfig, load_config, split_trailing_args


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run every test in an empty directory with an empty config home."""
    monkeypatch.chdir(tmp_path)
    config_home = tmp_path / "config_home"
    config_home.mkdir()
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    return config_home


def test_config_defaults() -> None:
    config = load_config({"paths": ["src"]})
    assert config.paths == ["src"]
    assert config.executable is None
    assert config.arguments == ""
    assert config.wait_timeout == 0.0
    assert config.launch_delay == 0.0
    assert config.no_window is False
    assert config.load_profile is False
    assert config.verbose is False
    assert config.log_file is None
    assert config.log_level == "INFO"
    assert not config.waits
    assert not config.debounces


def test_cli_values_override_defaults() -> None:
    config = load_config({
        "paths": ["a", "b"],
        "executable": "make",
        "arguments": "-C build",
        "wait_timeout": 2.5,
        "launch_delay": 0.2,
        "no_window": True,
        "load_profile": True,
    })
    assert config.executable == "make"
    assert config.arguments == "-C build"
    assert config.wait_timeout == 2.5
    assert config.launch_delay == 0.2
    assert config.no_window is True
    assert config.load_profile is True
    assert config.waits and not config.waits_forever
    assert config.debounces


def test_none_cli_values_are_ignored(tmp_path: Path) -> None:
    (tmp_path / "watchcat.ini").write_text("[watchcat]\nexecutable = ninja\n", encoding="utf-8")
    config = load_config({"paths": ["."], "executable": None})
    assert config.executable == "ninja"


def test_config_file_priority(tmp_path: Path, isolated_config: Path) -> None:
    """Local watchcat.ini wins over the user config; CLI wins over both."""
    user_dir = isolated_config / "watchcat"
    user_dir.mkdir()
    (user_dir / "config.ini").write_text(
        "[watchcat]\nexecutable = user-exe\nlaunch_delay = 3\n", encoding="utf-8"
    )

    config = load_config({"paths": ["."]})
    assert config.executable == "user-exe"
    assert config.launch_delay == 3.0

    (tmp_path / "watchcat.ini").write_text(
        "[watchcat]\nexecutable = local-exe\nwait_timeout = -1\nverbose = yes\n", encoding="utf-8"
    )
    config = load_config({"paths": ["."]})
    assert config.executable == "local-exe"
    # Only the first existing file is read
    assert config.launch_delay == 0.0
    assert config.waits_forever
    assert config.verbose is True
    assert config.log_level == "DEBUG"

    config = load_config({"paths": ["."], "executable": "cli-exe"})
    assert config.executable == "cli-exe"


def test_malformed_config_file_is_ignored(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    (tmp_path / "watchcat.ini").write_text("executable = no section header\n", encoding="utf-8")
    config = load_config({"paths": ["."]})
    assert config.executable is None
    assert "Failed to parse config file" in caplog.text


def test_config_file_paths_windows_appdata(tmp_path: Path) -> None:
    from watchcat.config import _get_config_file_paths

    env = {"APPDATA": str(tmp_path / "AppData")}
    with patch.dict(os.environ, env, clear=True), patch("watchcat.config.os.name", "nt"):
        paths = _get_config_file_paths()
    assert paths[0] == "watchcat.ini"
    assert paths[1] == os.path.join(str(tmp_path / "AppData"), "watchcat", "config.ini")


@pytest.mark.parametrize("value", [-1, "-1", -1.0])
def test_wait_forever_accepted(value: object) -> None:
    assert load_config({"paths": ["."], "wait_timeout": value}).waits_forever


@pytest.mark.parametrize(
    "key,value,fragment",
    [
        ("wait_timeout", -2, "wait_timeout must be -1, 0 or positive"),
        ("wait_timeout", -0.5, "wait_timeout must be -1, 0 or positive"),
        ("wait_timeout", float("nan"), "wait_timeout must be -1, 0 or positive"),
        ("wait_timeout", float("inf"), "wait_timeout must be -1, 0 or positive"),
        ("wait_timeout", "-inf", "wait_timeout must be -1, 0 or positive"),
        ("wait_timeout", "soon", "Invalid number for wait_timeout"),
        ("launch_delay", -0.1, "launch_delay must be non-negative"),
        ("launch_delay", float("inf"), "launch_delay must be non-negative"),
        ("launch_delay", "nan", "launch_delay must be non-negative"),
        ("launch_delay", "abc", "Invalid number for launch_delay"),
        ("log_level", "CHATTY", "Invalid log level"),
    ],
)
def test_invalid_values(key: str, value: object, fragment: str) -> None:
    with pytest.raises(ValueError, match=fragment):
        load_config({"paths": ["."], key: value})


@pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("ON", True), ("no", False), ("0", False)])
def test_boolean_strings(tmp_path: Path, raw: str, expected: bool) -> None:
    (tmp_path / "watchcat.ini").write_text(f"[watchcat]\nno_window = {raw}\n", encoding="utf-8")
    assert load_config({"paths": ["."]}).no_window is expected


def test_blank_executable_means_none() -> None:
    assert load_config({"paths": ["."], "executable": "  "}).executable is None


def test_log_level_is_normalized() -> None:
    assert load_config({"paths": ["."], "log_level": "warning"}).log_level == "WARNING"


def test_log_file_is_created(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "watchcat.log"
    config = load_config({"paths": ["."], "log_file": str(log_file)})
    assert config.log_file == str(log_file.absolute())
    assert log_file.exists()


def test_log_file_directory_rejected(tmp_path: Path) -> None:
    log_dir = tmp_path / "a_dir"
    log_dir.mkdir()
    with pytest.raises(ValueError, match="not a regular file"):
        load_config({"paths": ["."], "log_file": str(log_dir)})


def test_unknown_keys_are_dropped() -> None:
    config = load_config({"paths": ["."], "ignore_stdin": True})
    assert isinstance(config, LaunchConfig)
    assert not hasattr(config, "ignore_stdin")


def test_config_is_frozen() -> None:
    config = load_config({"paths": ["."]})
    with pytest.raises(AttributeError):
        config.executable = "other"  # type: ignore[misc]


@pytest.mark.parametrize(
    "argv,expected_tokens,expected_args",
    [
        (["src", "-e", "make"], ["src", "-e", "make"], None),
        (["src", "-e", "make", "-a", "-C", "build", "all"], ["src", "-e", "make"], "-C build all"),
        (["src", "--args", "-v", "--fast"], ["src"], "-v --fast"),
        (["src", "-a"], ["src"], ""),
        (["src", "--args=--fast", "-v"], ["src"], "--fast -v"),
        (["src", "-a", "x", "-a", "y"], ["src"], "x -a y"),
        (["--", "-a"], ["--", "-a"], None),
        (["-e", "make", "--", "src", "--args=x"], ["-e", "make", "--", "src", "--args=x"], None),
    ],
    ids=["No Args", "Short Flag", "Long Flag", "Empty", "Equals Form", "Repeated Flag", "End Of Options", "Equals After End Of Options"],
)
def test_split_trailing_args(argv: list[str], expected_tokens: list[str], expected_args: str) -> None:
    tokens, args = split_trailing_args(argv)
    assert tokens == expected_tokens
    assert args == expected_args


def test_config_file_paths_key_is_ignored(tmp_path: Path) -> None:
    """Watched paths are taken from the command line only."""
    (tmp_path / "watchcat.ini").write_text("[watchcat]\npaths = src\nexecutable = make\n", encoding="utf-8")

    config = load_config({})

    assert config.paths == []
    assert config.executable == "make"
