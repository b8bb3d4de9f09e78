from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import TypeAlias
import logging
import tomllib

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "tracemark.toml"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]

DEFAULT_PLACEHOLDERS: tuple[str, ...] = (
    "SPEC-PENDING",
    "SPEC-PROTOTYPE",
    "SPEC-TBD",
    "CONCERN-PENDING",
    "CONCERN-PROTOTYPE",
    "TASK-PENDING",
    "TEST-PENDING",
)

DEFAULT_CONCERN_IDS: tuple[str, ...] = (
    "REL",
    "SEC",
    "OBS",
    "CAP",
    "CONS",
    "COMP",
    "CONF",
    "PERF",
)

DEFAULT_SPEC_DIRS: tuple[str, ...] = ("docs/specs",)
DEFAULT_SPEC_GLOBS: tuple[str, ...] = ("*.md",)

DEFAULT_SOURCE_EXTENSIONS: tuple[str, ...] = (
    ".c",
    ".cc",
    ".cpp",
    ".cs",
    ".go",
    ".h",
    ".hpp",
    ".java",
    ".js",
    ".jsx",
    ".kt",
    ".py",
    ".rb",
    ".rs",
    ".scala",
    ".sh",
    ".swift",
    ".toml",
    ".ts",
    ".tsx",
)

DEFAULT_TEST_PATH_PATTERNS: tuple[str, ...] = (
    "tests/*",
    "*/tests/*",
    "test/*",
    "*/test/*",
    "test_*.py",
    "*_test.py",
    "*_test.go",
    "*.test.ts",
    "*.test.js",
    "*.spec.ts",
    "*.spec.js",
)

DEFAULT_EXCLUDE: tuple[str, ...] = (
    ".git",
    "node_modules",
    "target",
    ".venv",
    "venv",
    "__pycache__",
)

VALIDATION_MODES: tuple[str, ...] = ("error", "warning")


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        logger.warning("cannot read config %s: %s", path, exc)
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("ignoring malformed config %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def config_file_path(root: Path | None = None, config_path: Path | None = None) -> Path:
    if config_path is not None:
        return config_path
    base = root if root is not None else Path.cwd()
    return base / DEFAULT_CONFIG_NAME


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    return _load_toml(config_file_path(root, config_path))


def _section(data: TomlTable, name: str) -> TomlTable:
    section = data.get(name, {})
    return section if isinstance(section, dict) else {}


def _normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _as_positive_int(value: TomlValue) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and value > 0:
        return value
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None


def _as_positive_float(value: TomlValue) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def placeholder_set(section: TomlTable | None) -> tuple[str, ...]:
    """Compiled-in placeholders, replaced by ``placeholders`` and extended by
    ``extra_placeholders`` when the markers section sets them."""
    if not isinstance(section, dict):
        return DEFAULT_PLACEHOLDERS
    override = _normalize_name_list(section.get("placeholders"))
    base = list(override) if override else list(DEFAULT_PLACEHOLDERS)
    for extra in _normalize_name_list(section.get("extra_placeholders")):
        if extra not in base:
            base.append(extra)
    return tuple(base)


def validation_mode(section: TomlTable | None) -> str:
    if not isinstance(section, dict):
        return "error"
    raw = section.get("mode")
    if isinstance(raw, str) and raw.strip().lower() in VALIDATION_MODES:
        return raw.strip().lower()
    if raw is not None:
        logger.warning("unknown validation mode %r; using strict mode", raw)
    return "error"


@dataclass(frozen=True)
class VerifyConfig:
    """Resolved settings for one verification run."""

    spec_dirs: tuple[str, ...] = DEFAULT_SPEC_DIRS
    spec_globs: tuple[str, ...] = DEFAULT_SPEC_GLOBS
    concern_registry: str | None = None
    placeholders: tuple[str, ...] = DEFAULT_PLACEHOLDERS
    extensions: tuple[str, ...] = DEFAULT_SOURCE_EXTENSIONS
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    test_path_patterns: tuple[str, ...] = DEFAULT_TEST_PATH_PATTERNS
    mode: str = "error"
    fail_on_warnings: bool = False
    max_workers: int | None = None
    deadline_seconds: float | None = None
    config_file: str | None = None

    @property
    def strict(self) -> bool:
        return self.mode == "error"


def resolve_verify_config(
    *,
    root: Path | None = None,
    config_path: Path | None = None,
    overrides: TomlTable | None = None,
) -> VerifyConfig:
    """Combine the TOML sections with explicit overrides into a ``VerifyConfig``.

    Overrides use flat keys (``mode``, ``spec_dirs``, ...); ``None`` values
    leave the configured value in place.
    """
    source = config_file_path(root, config_path)
    data = load_config(config_path=source)
    flat: TomlTable = {}
    for name in ("registry", "markers", "validation"):
        flat.update(_section(data, name))
    merged = merge_payload(overrides or {}, flat)

    spec_dirs = _normalize_name_list(merged.get("spec_dirs"))
    spec_globs = _normalize_name_list(merged.get("spec_globs"))
    extensions = [
        ext if ext.startswith(".") else f".{ext}"
        for ext in (item.lower() for item in _normalize_name_list(merged.get("extensions")))
    ]
    exclude = _normalize_name_list(merged.get("exclude"))
    test_patterns = _normalize_name_list(merged.get("test_path_patterns"))
    concern_registry = merged.get("concern_registry")
    return VerifyConfig(
        spec_dirs=tuple(spec_dirs) or DEFAULT_SPEC_DIRS,
        spec_globs=tuple(spec_globs) or DEFAULT_SPEC_GLOBS,
        concern_registry=(
            str(concern_registry).strip()
            if isinstance(concern_registry, str) and concern_registry.strip()
            else None
        ),
        placeholders=placeholder_set(merged),
        extensions=tuple(extensions) or DEFAULT_SOURCE_EXTENSIONS,
        exclude=tuple(exclude) if "exclude" in merged else DEFAULT_EXCLUDE,
        test_path_patterns=(
            tuple(test_patterns)
            if "test_path_patterns" in merged
            else DEFAULT_TEST_PATH_PATTERNS
        ),
        mode=validation_mode(merged),
        fail_on_warnings=_as_bool(merged.get("fail_on_warnings")),
        max_workers=_as_positive_int(merged.get("max_workers")),
        deadline_seconds=_as_positive_float(merged.get("deadline_seconds")),
        config_file=str(source.resolve()) if source.is_file() else None,
    )
