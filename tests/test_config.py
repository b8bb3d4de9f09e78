from __future__ import annotations

import logging

from tracemark.config import (
    DEFAULT_EXCLUDE,
    DEFAULT_PLACEHOLDERS,
    DEFAULT_SPEC_DIRS,
    placeholder_set,
    resolve_verify_config,
)


def test_defaults_without_config_file(tmp_path) -> None:
    config = resolve_verify_config(root=tmp_path)
    assert config.spec_dirs == DEFAULT_SPEC_DIRS
    assert config.placeholders == DEFAULT_PLACEHOLDERS
    assert config.exclude == DEFAULT_EXCLUDE
    assert config.strict
    assert not config.fail_on_warnings
    assert config.max_workers is None


def test_sections_are_read_from_tracemark_toml(tmp_path) -> None:
    (tmp_path / "tracemark.toml").write_text(
        "[registry]\n"
        'spec_dirs = ["docs/requirements", "docs/adr"]\n'
        'concern_registry = "docs/concerns.txt"\n'
        "\n"
        "[markers]\n"
        'extra_placeholders = ["SPEC-LATER"]\n'
        'extensions = ["rs", ".PY"]\n'
        "exclude = []\n"
        "\n"
        "[validation]\n"
        'mode = "warning"\n'
        "fail_on_warnings = true\n"
        "max_workers = 4\n"
        "deadline_seconds = 2.5\n",
        encoding="utf-8",
    )
    config = resolve_verify_config(root=tmp_path)
    assert config.spec_dirs == ("docs/requirements", "docs/adr")
    assert config.concern_registry == "docs/concerns.txt"
    assert config.placeholders == DEFAULT_PLACEHOLDERS + ("SPEC-LATER",)
    assert config.extensions == (".rs", ".py")
    assert config.exclude == ()
    assert not config.strict
    assert config.fail_on_warnings
    assert config.max_workers == 4
    assert config.deadline_seconds == 2.5


def test_overrides_win_and_none_keeps_configured_value(tmp_path) -> None:
    (tmp_path / "tracemark.toml").write_text('[validation]\nmode = "warning"\n', encoding="utf-8")
    assert resolve_verify_config(root=tmp_path, overrides={"mode": None}).mode == "warning"
    assert resolve_verify_config(root=tmp_path, overrides={"mode": "error"}).strict


def test_placeholders_override_replaces_defaults() -> None:
    assert placeholder_set({"placeholders": "SPEC-WIP, TASK-WIP"}) == ("SPEC-WIP", "TASK-WIP")
    assert placeholder_set(None) == DEFAULT_PLACEHOLDERS


def test_malformed_config_falls_back_to_defaults(tmp_path, caplog) -> None:
    path = tmp_path / "custom.toml"
    path.write_text("[validation\nmode = ", encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="tracemark.config"):
        config = resolve_verify_config(config_path=path)
    assert config.mode == "error"
    assert "ignoring malformed config" in caplog.text


def test_unknown_mode_is_strict(tmp_path, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="tracemark.config"):
        config = resolve_verify_config(root=tmp_path, overrides={"mode": "lenient"})
    assert config.strict
    assert "unknown validation mode" in caplog.text
