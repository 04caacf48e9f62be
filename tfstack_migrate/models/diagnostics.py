"""Typed diagnostics surfaced by lifecycle operations.

Every lifecycle call returns a ``Diagnostics`` collection. ``Error`` entries
halt the call that produced them, ``Warning`` entries are informational.
"""

from collections.abc import Iterable, Iterator

from pydantic import BaseModel, Field

from ..core.exceptions import (
    ConfigurationError,
    ConversionError,
    FingerprintError,
    PreconditionError,
    RemoteNotFoundError,
    StackMigrationError,
    TfeApiError,
)
from .enums import Severity


class Diagnostic(BaseModel):
    """A single error or warning with a short summary and a detailed explanation."""

    severity: Severity
    summary: str
    detail: str = ""
    attribute: str | None = Field(default=None, description="Attribute the diagnostic refers to")

    def render(self) -> str:
        prefix = "Error" if self.severity is Severity.ERROR else "Warning"
        location = f" ({self.attribute})" if self.attribute else ""
        if self.detail:
            return f"{prefix}: {self.summary}{location}\n  {self.detail}"
        return f"{prefix}: {self.summary}{location}"


class Diagnostics:
    """Ordered collection of diagnostics."""

    # Summaries used when an exception is converted without an explicit summary
    SUMMARIES: dict[type[StackMigrationError], str] = {
        ConfigurationError: "Configuration Error",
        PreconditionError: "Precondition Failed",
        RemoteNotFoundError: "Remote Object Not Found",
        TfeApiError: "HCP Terraform API Error",
        FingerprintError: "Unable to Calculate Configuration Hash",
        ConversionError: "State Conversion Failed",
    }

    def __init__(self, items: Iterable[Diagnostic] | None = None):
        self._items: list[Diagnostic] = list(items or [])

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def add_error(self, summary: str, detail: str = "", attribute: str | None = None) -> None:
        self._items.append(
            Diagnostic(severity=Severity.ERROR, summary=summary, detail=detail, attribute=attribute)
        )

    def add_warning(self, summary: str, detail: str = "", attribute: str | None = None) -> None:
        self._items.append(
            Diagnostic(
                severity=Severity.WARNING, summary=summary, detail=detail, attribute=attribute
            )
        )

    def add_exception(self, error: Exception, summary: str | None = None) -> None:
        """Record an exception as an error diagnostic."""
        if isinstance(error, PreconditionError):
            self.add_error(summary or error.summary, error.detail)
            return
        if summary is None:
            summary = next(
                (text for exc_type, text in self.SUMMARIES.items() if isinstance(error, exc_type)),
                "Unexpected Error",
            )
        self.add_error(summary, str(error))

    def extend(self, other: Iterable[Diagnostic]) -> None:
        self._items.extend(other)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity is Severity.WARNING]

    def has_error(self) -> bool:
        return any(d.severity is Severity.ERROR for d in self._items)

    def __repr__(self) -> str:
        return f"Diagnostics({self._items!r})"
