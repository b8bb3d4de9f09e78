"""Error taxonomy for traceability verification runs."""

from __future__ import annotations

from dataclasses import dataclass


class TracemarkError(Exception):
    """Base class for every error raised by tracemark."""


class NeverThrown(TracemarkError, RuntimeError):
    """Raised by ``never()`` when a path that should be unreachable runs."""

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.reason = message
        self.env = dict(env or {})


class RegistryLoadError(TracemarkError):
    """The specification registry could not be built.

    Fatal: a partial registry would report every marker that points into the
    missing documents as hallucinated.
    """


class DuplicateRequirementError(RegistryLoadError):
    def __init__(
        self,
        requirement_id: str,
        *,
        first: tuple[str, int],
        second: tuple[str, int],
    ):
        self.requirement_id = requirement_id
        self.first = first
        self.second = second
        super().__init__(
            f"Requirement {requirement_id} declared twice: "
            f"{first[0]}:{first[1]} and {second[0]}:{second[1]}"
        )


@dataclass(frozen=True)
class FileReadError(TracemarkError):
    """A single source file could not be read; the run continues without it."""

    path: str
    reason: str

    def __str__(self) -> str:
        return f"{self.path}: {self.reason}"


class HallucinatedMarkerError(TracemarkError):
    """One or more markers reference identifiers absent from the registry."""

    def __init__(self, identifiers: list[str]):
        self.identifiers = list(identifiers)
        preview = ", ".join(self.identifiers[:5])
        suffix = "" if len(self.identifiers) <= 5 else f" (+{len(self.identifiers) - 5} more)"
        super().__init__(f"Hallucinated markers found: {preview}{suffix}")


class PlaceholderWarning(UserWarning):
    """Informational: a placeholder marker stands in for a missing spec."""
