"""Provider diagnostics and the normalized asset result shared by all adapters.

Every provider adapter returns a ``GeneratedAssetResult``. The orchestrator
never inspects adapter return values directly; it passes them through
``normalize_asset_result`` and works with the ``NormalizedAssetResult`` it
gets back, so a bare URL string, a structured result or a loosely shaped
mapping from a stand-in all look the same downstream.
"""

import json
import traceback
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class DiagnosticLevel(str, Enum):
    """Severity of a diagnostic or pipeline log entry."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ProviderName(str, Enum):
    """External capability that produced an asset."""

    GEMINI = "gemini"
    VEO = "veo"
    LYRIA = "lyria"


class ProviderOperation(str, Enum):
    """Pipeline operation that requested an asset."""

    STORYBOARD = "storyboard"
    VIDEO = "video"
    VOICEOVER = "voiceover"
    MUSIC = "music"


@dataclass(frozen=True)
class SerializedError:
    """A captured failure reduced to plain data."""

    message: str
    name: Optional[str] = None
    stack: Optional[str] = None
    cause: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary, dropping unset fields."""
        result = {"message": self.message}
        if self.name:
            result["name"] = self.name
        if self.stack:
            result["stack"] = self.stack
        if self.cause:
            result["cause"] = self.cause
        return result


@dataclass(frozen=True)
class ProviderDiagnostic:
    """One structured observation about a provider call."""

    level: DiagnosticLevel
    code: str
    message: str
    context: dict = field(default_factory=dict)
    error: Optional[SerializedError] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for logs and API responses."""
        return {
            "level": self.level.value,
            "code": self.code,
            "message": self.message,
            "context": dict(self.context),
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class GeneratedAssetResult:
    """Output of a provider adapter call.

    A missing ``url`` or a substituted (fallback) asset must always come with
    at least one diagnostic explaining it.
    """

    provider: ProviderName
    operation: ProviderOperation
    url: Optional[str]
    fallback_used: bool = False
    diagnostics: list[ProviderDiagnostic] = field(default_factory=list)

    def __post_init__(self) -> None:
        if (self.url is None or self.fallback_used) and not self.diagnostics:
            raise ValueError(
                f"{self.provider.value}/{self.operation.value} result without a url "
                "or with a fallback must carry a diagnostic"
            )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "provider": self.provider.value,
            "operation": self.operation.value,
            "url": self.url,
            "fallback_used": self.fallback_used,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


@dataclass
class NormalizedAssetResult:
    """Shape-independent view of any adapter return value."""

    url: Optional[str] = None
    fallback_used: bool = False
    diagnostics: list[ProviderDiagnostic] = field(default_factory=list)


def serialize_error(value: Any) -> SerializedError:
    """Normalize any caught error value to a ``SerializedError``.

    Exceptions keep their type name, formatted traceback and the message of
    their ``__cause__``. Strings become the message. Mappings that already
    carry a string ``message`` are taken as-is. Anything else is JSON
    encoded, with a literal fallback when encoding fails.
    """
    if isinstance(value, SerializedError):
        return value

    if isinstance(value, BaseException):
        stack = None
        if value.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(value), value, value.__traceback__))
        cause = value.__cause__
        return SerializedError(
            name=type(value).__name__,
            message=str(value),
            stack=stack,
            cause=str(cause) if cause is not None else None,
        )

    if isinstance(value, str):
        return SerializedError(message=value)

    if isinstance(value, Mapping) and isinstance(value.get("message"), str):
        return SerializedError(
            message=value["message"],
            name=value.get("name"),
            stack=value.get("stack"),
            cause=value.get("cause"),
        )

    try:
        return SerializedError(message=json.dumps(value))
    except (TypeError, ValueError):
        return SerializedError(message="Unknown error")


def diagnostic(
    level: DiagnosticLevel,
    code: str,
    message: str,
    context: Optional[dict] = None,
    error: Any = None,
) -> ProviderDiagnostic:
    """Create a diagnostic, serializing ``error`` at the point of observation."""
    return ProviderDiagnostic(
        level=level,
        code=code,
        message=message,
        context=dict(context or {}),
        error=serialize_error(error) if error is not None else None,
    )


def _to_level(value: Any) -> DiagnosticLevel:
    try:
        return DiagnosticLevel(value)
    except ValueError:
        return DiagnosticLevel.INFO


def _normalize_diagnostic(entry: Any) -> Optional[ProviderDiagnostic]:
    if isinstance(entry, ProviderDiagnostic):
        return entry
    if not isinstance(entry, Mapping):
        return None

    context = entry.get("context")
    error = entry.get("error")
    return ProviderDiagnostic(
        level=_to_level(entry.get("level")),
        code=str(entry.get("code") or ""),
        message=str(entry.get("message") or ""),
        context=dict(context) if isinstance(context, Mapping) else {},
        error=serialize_error(error) if error is not None else None,
    )


def normalize_asset_result(value: Any) -> NormalizedAssetResult:
    """Adapt any adapter return value to ``NormalizedAssetResult``.

    Accepts a bare URL string, a ``GeneratedAssetResult`` or a mapping shaped
    like one (``fallback_used`` or ``fallbackUsed``). Anything else collapses
    to an empty result.
    """
    if isinstance(value, str):
        return NormalizedAssetResult(url=value)

    if isinstance(value, GeneratedAssetResult):
        return NormalizedAssetResult(
            url=value.url if isinstance(value.url, str) else None,
            fallback_used=bool(value.fallback_used),
            diagnostics=list(value.diagnostics),
        )

    if not isinstance(value, Mapping):
        return NormalizedAssetResult()

    url = value.get("url")
    raw_diagnostics = value.get("diagnostics")
    diagnostics = []
    if isinstance(raw_diagnostics, (list, tuple)):
        for entry in raw_diagnostics:
            normalized = _normalize_diagnostic(entry)
            if normalized is not None:
                diagnostics.append(normalized)

    return NormalizedAssetResult(
        url=url if isinstance(url, str) else None,
        fallback_used=bool(value.get("fallback_used", value.get("fallbackUsed", False))),
        diagnostics=diagnostics,
    )


def select_primary_diagnostic(
    diagnostics: list[ProviderDiagnostic],
) -> Optional[ProviderDiagnostic]:
    """Pick the most relevant diagnostic: first error, else first warning."""
    for level in (DiagnosticLevel.ERROR, DiagnosticLevel.WARN):
        for entry in diagnostics:
            if entry.level == level:
                return entry
    return None
