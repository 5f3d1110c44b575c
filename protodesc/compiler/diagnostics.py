"""Error taxonomy and the diagnostic channel for schema loading."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum, auto

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str], None]


class DiagnosticKind(StrEnum):
    """Category of a reported problem."""

    LEXICAL = auto()
    SYNTAX = auto()
    SEMANTIC = auto()
    IO = auto()


@dataclass(frozen=True)
class Diagnostic:
    """A single problem found while loading or linking schema files."""

    kind: DiagnosticKind
    message: str
    file: str | None = None
    line: int | None = None
    column: int | None = None

    def __str__(self) -> str:
        location = self.file or "<unknown>"
        if self.line is not None:
            location += f":{self.line}"
            if self.column is not None:
                location += f":{self.column}"
        return f"{location}: {self.kind} error: {self.message}"


class ProtoError(RuntimeError):
    """Base class for errors raised while reading schema files."""

    kind = DiagnosticKind.SEMANTIC

    def __init__(
        self,
        message: str,
        file: str | None = None,
        line: int | None = None,
        column: int | None = None,
    ):
        self.diagnostic = Diagnostic(self.kind, message, file, line, column)
        super().__init__(str(self.diagnostic))


class LexicalError(ProtoError):
    """Raised on an illegal character or an unterminated literal."""

    kind = DiagnosticKind.LEXICAL


class ProtoSyntaxError(ProtoError):
    """Raised when the token stream violates the grammar."""

    kind = DiagnosticKind.SYNTAX


class SemanticError(ProtoError):
    """Duplicate names, unresolved types, field number clashes, bad defaults."""

    kind = DiagnosticKind.SEMANTIC


class SchemaIOError(ProtoError):
    """Raised when a directory or file cannot be read."""

    kind = DiagnosticKind.IO


def _log_diagnostic(message: str) -> None:
    logger.warning("%s", message)


class DiagnosticReporter:
    """Collects diagnostics and forwards each one to the error callback.

    The callback receives the formatted message once per problem. It has no
    return value and cannot stop processing.
    """

    def __init__(self, error_cb: ErrorCallback | None = None):
        self.error_cb = error_cb or _log_diagnostic
        self.diagnostics: list[Diagnostic] = []

    def report(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)
        self.error_cb(str(diagnostic))

    def error(
        self,
        kind: DiagnosticKind,
        message: str,
        file: str | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        self.report(Diagnostic(kind, message, file, line, column))

    def clear(self) -> None:
        self.diagnostics.clear()
