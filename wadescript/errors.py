"""Structured error objects for the WadeScript compiler.

Every stage (lexer, parser, type checker, code generator, and the loader and
backend around them) reports failures as a single ``CompileError`` wrapping a
``WadeError``. Errors are machine-readable: ``to_dict``/``to_json`` give the
form printed by the CLI.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    LEX_ERROR = "lex_error"
    PARSE_ERROR = "parse_error"
    TYPE_ERROR = "type_error"
    CODEGEN_ERROR = "codegen_error"
    IMPORT_ERROR = "import_error"
    BACKEND_ERROR = "backend_error"
    CONFIG_ERROR = "config_error"


@dataclass
class SourceLocation:
    line: int
    column: int
    file: str = "<stdin>"

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


@dataclass
class WadeError:
    kind: ErrorKind
    message: str
    location: Optional[SourceLocation] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.location:
            d["location"] = {
                "file": self.location.file,
                "line": self.location.line,
                "column": self.location.column,
            }
        if self.details:
            d["details"] = self.details
        return d

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def __str__(self) -> str:
        loc = f" at {self.location}" if self.location else ""
        return f"[{self.kind.value}]{loc}: {self.message}"


def lex_error(message: str, location: Optional[SourceLocation] = None) -> WadeError:
    return WadeError(kind=ErrorKind.LEX_ERROR, message=message, location=location)


def parse_error(
    message: str,
    location: Optional[SourceLocation] = None,
    found: Optional[str] = None,
) -> WadeError:
    details: dict[str, Any] = {}
    if found is not None:
        details["found"] = found
    return WadeError(
        kind=ErrorKind.PARSE_ERROR,
        message=message,
        location=location,
        details=details,
    )


def type_error(message: str, location: Optional[SourceLocation] = None,
               expected: Any = None, actual: Any = None) -> WadeError:
    details: dict[str, Any] = {}
    if expected is not None:
        details["expected_type"] = str(expected)
    if actual is not None:
        details["actual_type"] = str(actual)
    return WadeError(
        kind=ErrorKind.TYPE_ERROR,
        message=message,
        location=location,
        details=details,
    )


def codegen_error(message: str, location: Optional[SourceLocation] = None) -> WadeError:
    return WadeError(kind=ErrorKind.CODEGEN_ERROR, message=message, location=location)


def import_error(message: str, path: str = "",
                 location: Optional[SourceLocation] = None) -> WadeError:
    return WadeError(
        kind=ErrorKind.IMPORT_ERROR,
        message=message,
        location=location,
        details={"path": path} if path else {},
    )


def backend_error(message: str) -> WadeError:
    return WadeError(kind=ErrorKind.BACKEND_ERROR, message=message)


def config_error(message: str, path: str) -> WadeError:
    return WadeError(kind=ErrorKind.CONFIG_ERROR, message=message, details={"path": path})


class CompileError(Exception):
    """Exception wrapping one or more WadeErrors.

    The compiler is fail-fast, so in practice this carries exactly one error;
    the list form keeps the JSON output shape stable for tools.
    """

    def __init__(self, errors: list[WadeError] | WadeError):
        if isinstance(errors, WadeError):
            errors = [errors]
        self.errors = errors
        super().__init__(self._format())

    @property
    def error(self) -> WadeError:
        return self.errors[0]

    @property
    def kind(self) -> ErrorKind:
        return self.errors[0].kind

    def _format(self) -> str:
        return "\n".join(str(e) for e in self.errors)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps([e.to_dict() for e in self.errors], indent=indent)
