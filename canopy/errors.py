# canopy/errors.py
"""
Canopy Error Types

Error infrastructure shared by the parser, the code generator, the script
runtime and the coverage sessions.

Error Hierarchy:
────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│  CanopyError (base)                                                         │
│  ├── ScriptSyntaxError    - Malformed script text                           │
│  ├── RenderError          - Tree cannot be rendered or compiled             │
│  ├── ScriptRuntimeError   - Faults raised while a script runs               │
│  │   ├── UndefinedNameError                                                 │
│  │   ├── UndefinedMethodError                                               │
│  │   ├── ScriptTypeError                                                    │
│  │   ├── ScriptZeroDivisionError                                            │
│  │   ├── ScriptRaise      - The script's own `raise`                        │
│  │   ├── InvalidJumpError - break/next/return outside their context         │
│  │   └── StepLimitExceeded                                                  │
│  ├── SessionError         - Hook registry misuse                            │
│  │   ├── NoActiveSessionError                                               │
│  │   └── StaleHookError                                                     │
│  └── ExecutionError       - A script fault, with the partial report         │
└─────────────────────────────────────────────────────────────────────────────┘

Error Codes:
────────────
Codes follow the pattern CNPY-NNNN:
  - 1000-1999: Syntax errors
  - 4000-4999: Rendering errors
  - 5000-5999: Script runtime errors
  - 6000-6999: Session errors
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Dict, List, Optional

__all__ = [
    "ErrorPhase",
    "ErrorCode",
    "CanopyErrorCodes",
    "SourceSpan",
    "CanopyError",
    "ScriptSyntaxError",
    "RenderError",
    "ScriptRuntimeError",
    "UndefinedNameError",
    "UndefinedMethodError",
    "ScriptTypeError",
    "ScriptZeroDivisionError",
    "ScriptRaise",
    "InvalidJumpError",
    "StepLimitExceeded",
    "SessionError",
    "NoActiveSessionError",
    "StaleHookError",
    "ExecutionError",
]


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ErrorPhase(Enum):
    """Pipeline phase where the error occurred."""

    SYNTAX = "syntax"
    RENDER = "render"
    RUNTIME = "runtime"
    SESSION = "session"


class ErrorCode:
    """
    Structured error code, printed as PREFIX-NNNN.
    """

    __slots__ = ("prefix", "number", "phase")

    def __init__(self, prefix: str, number: int, phase: ErrorPhase) -> None:
        self.prefix = prefix
        self.number = number
        self.phase = phase

    @property
    def code(self) -> str:
        """Get the full error code string."""
        return f"{self.prefix}-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.phase.value})"

    def __hash__(self) -> int:
        return hash((self.prefix, self.number))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ErrorCode):
            return NotImplemented
        return self.prefix == other.prefix and self.number == other.number


class CanopyErrorCodes:
    """Predefined error codes."""

    # ═══════════════════════════════════════════════════════════════════════════
    # SYNTAX ERRORS (1000-1999)
    # ═══════════════════════════════════════════════════════════════════════════

    UNEXPECTED_INPUT = ErrorCode("CNPY", 1001, ErrorPhase.SYNTAX)
    INVALID_LITERAL = ErrorCode("CNPY", 1002, ErrorPhase.SYNTAX)

    # ═══════════════════════════════════════════════════════════════════════════
    # RENDERING ERRORS (4000-4999)
    # ═══════════════════════════════════════════════════════════════════════════

    UNRENDERABLE_NODE = ErrorCode("CNPY", 4001, ErrorPhase.RENDER)
    INVALID_GENERATED_CODE = ErrorCode("CNPY", 4002, ErrorPhase.RENDER)

    # ═══════════════════════════════════════════════════════════════════════════
    # RUNTIME ERRORS (5000-5999)
    # ═══════════════════════════════════════════════════════════════════════════

    RUNTIME_FAULT = ErrorCode("CNPY", 5000, ErrorPhase.RUNTIME)
    UNDEFINED_NAME = ErrorCode("CNPY", 5001, ErrorPhase.RUNTIME)
    UNDEFINED_METHOD = ErrorCode("CNPY", 5002, ErrorPhase.RUNTIME)
    TYPE_MISMATCH = ErrorCode("CNPY", 5003, ErrorPhase.RUNTIME)
    ZERO_DIVISION = ErrorCode("CNPY", 5004, ErrorPhase.RUNTIME)
    USER_RAISE = ErrorCode("CNPY", 5005, ErrorPhase.RUNTIME)
    INVALID_JUMP = ErrorCode("CNPY", 5006, ErrorPhase.RUNTIME)
    STEP_LIMIT = ErrorCode("CNPY", 5007, ErrorPhase.RUNTIME)
    EXECUTION_FAILED = ErrorCode("CNPY", 5100, ErrorPhase.RUNTIME)

    # ═══════════════════════════════════════════════════════════════════════════
    # SESSION ERRORS (6000-6999)
    # ═══════════════════════════════════════════════════════════════════════════

    NO_ACTIVE_SESSION = ErrorCode("CNPY", 6001, ErrorPhase.SESSION)
    STALE_HOOK = ErrorCode("CNPY", 6002, ErrorPhase.SESSION)
    UNBALANCED_POP = ErrorCode("CNPY", 6003, ErrorPhase.SESSION)


# ═══════════════════════════════════════════════════════════════════════════════
# SOURCE LOCATIONS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SourceSpan:
    """A position in a script: file tag, 1-based line, optional column."""

    file: str = ""
    line: int = 0
    column: int = 0

    @classmethod
    def from_node(cls, node: Any) -> "SourceSpan":
        """Create a SourceSpan from anything carrying ``file``/``line``."""
        return cls(
            file=getattr(node, "file", "") or "",
            line=getattr(node, "line", 0) or 0,
        )

    def __str__(self) -> str:
        if not self.file and self.line == 0:
            return "<unknown location>"

        parts = []
        if self.file:
            parts.append(self.file)
        if self.line > 0:
            parts.append(str(self.line))
            if self.column > 0:
                parts.append(str(self.column))

        return ":".join(parts)


# ═══════════════════════════════════════════════════════════════════════════════
# BASE EXCEPTION
# ═══════════════════════════════════════════════════════════════════════════════

class CanopyError(Exception):
    """
    Base exception for all canopy errors.

    Carries a code and a source span so that the CLI can print
    GCC-style ``file:line: error: message [CNPY-NNNN]`` lines.
    """

    default_code = CanopyErrorCodes.RUNTIME_FAULT

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        span: Optional[SourceSpan] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.span = span or SourceSpan()
        self.cause = cause

    def to_gcc_format(self) -> str:
        """Format as a GCC-style error message."""
        return f"{self.span}: error: {self.message} [{self.code}]"

    def to_json(self) -> Dict[str, Any]:
        return {
            "code": self.code.code,
            "phase": self.code.phase.value,
            "message": self.message,
            "file": self.span.file,
            "line": self.span.line,
            "column": self.span.column,
        }

    def __str__(self) -> str:
        if self.span.line > 0 or self.span.file:
            return f"{self.span}: {self.message}"
        return self.message


# ───────────────────────────────────────────────────────────────────────────────
# SYNTAX / RENDERING
# ───────────────────────────────────────────────────────────────────────────────

class ScriptSyntaxError(CanopyError):
    """Malformed script text."""

    default_code = CanopyErrorCodes.UNEXPECTED_INPUT

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        span: Optional[SourceSpan] = None,
        excerpt: str = "",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, code=code, span=span, **kwargs)
        self.excerpt = excerpt


class RenderError(CanopyError):
    """A tree that cannot be turned into runnable code.

    After instrumentation this always indicates a defect in the rewrite,
    so sessions propagate it instead of reporting.
    """

    default_code = CanopyErrorCodes.UNRENDERABLE_NODE


# ───────────────────────────────────────────────────────────────────────────────
# SCRIPT RUNTIME
# ───────────────────────────────────────────────────────────────────────────────

class ScriptRuntimeError(CanopyError):
    """Base class for faults raised while a script runs."""

    default_code = CanopyErrorCodes.RUNTIME_FAULT


class UndefinedNameError(ScriptRuntimeError):
    default_code = CanopyErrorCodes.UNDEFINED_NAME

    def __init__(self, name: str, **kwargs: Any) -> None:
        super().__init__(
            f"undefined local variable or method '{name}'", **kwargs
        )
        self.name = name


class UndefinedMethodError(ScriptRuntimeError):
    default_code = CanopyErrorCodes.UNDEFINED_METHOD

    def __init__(self, name: str, receiver: str, **kwargs: Any) -> None:
        super().__init__(f"undefined method '{name}' for {receiver}", **kwargs)
        self.name = name
        self.receiver = receiver


class ScriptTypeError(ScriptRuntimeError):
    default_code = CanopyErrorCodes.TYPE_MISMATCH


class ScriptZeroDivisionError(ScriptRuntimeError):
    default_code = CanopyErrorCodes.ZERO_DIVISION


class ScriptRaise(ScriptRuntimeError):
    """Raised by the script's own ``raise``."""

    default_code = CanopyErrorCodes.USER_RAISE


class InvalidJumpError(ScriptRuntimeError):
    default_code = CanopyErrorCodes.INVALID_JUMP

    def __init__(self, keyword: str, **kwargs: Any) -> None:
        super().__init__(f"Invalid {keyword}", **kwargs)
        self.keyword = keyword


class StepLimitExceeded(ScriptRuntimeError):
    default_code = CanopyErrorCodes.STEP_LIMIT

    def __init__(self, limit: int, **kwargs: Any) -> None:
        super().__init__(
            f"loop iteration limit of {limit} exceeded", **kwargs
        )
        self.limit = limit


# ───────────────────────────────────────────────────────────────────────────────
# SESSIONS
# ───────────────────────────────────────────────────────────────────────────────

class SessionError(CanopyError):
    """Misuse of the hook registry."""

    default_code = CanopyErrorCodes.UNBALANCED_POP


class NoActiveSessionError(SessionError):
    default_code = CanopyErrorCodes.NO_ACTIVE_SESSION

    def __init__(self, message: str = "no coverage session is active", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class StaleHookError(SessionError):
    default_code = CanopyErrorCodes.STALE_HOOK

    def __init__(self, hook_id: int, **kwargs: Any) -> None:
        super().__init__(
            f"hook #{hook_id} does not belong to an active session", **kwargs
        )
        self.hook_id = hook_id


class ExecutionError(CanopyError):
    """
    An instrumented script faulted.

    ``report`` holds the coverage collected up to the fault and
    ``fault`` the original exception (also chained as ``__cause__``).
    """

    default_code = CanopyErrorCodes.EXECUTION_FAILED

    def __init__(
        self,
        message: str,
        report: Optional[List[str]] = None,
        fault: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, cause=fault, **kwargs)
        self.report = list(report or [])
        self.fault = fault
