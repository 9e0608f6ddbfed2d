"""
Error taxonomy for Cobbler.

This module provides:
- CobblerError base class carrying the failing operation and its target
- Precondition, ambiguity, merge-conflict and external-process errors
- AgentErrorType enum and ErrorClassifier for agent CLI output
- Agent exception classes with error type information
"""

from __future__ import annotations

import re
from enum import Enum, auto
from typing import Optional, Sequence


class CobblerError(Exception):
    """
    Base exception for orchestration errors.

    Every error names the operation that failed and the object it was
    acting on (branch, task id, file), rendered as "<operation> <target>: <message>".
    """

    def __init__(self, message: str, operation: str = "", target: str = "") -> None:
        self.message = message
        self.operation = operation
        self.target = target
        super().__init__(self._format())

    def _format(self) -> str:
        prefix = " ".join(part for part in (self.operation, self.target) if part)
        return f"{prefix}: {self.message}" if prefix else self.message


class PreconditionError(CobblerError):
    """Raised before any mutation when an operation's precondition fails."""
    pass


class IssueStoreNotInitializedError(PreconditionError):
    """Raised when measure or stitch runs without an initialized issue store."""

    def __init__(self, operation: str, target: str = "") -> None:
        super().__init__("issue store is not initialized", operation, target)


class GenerationRequiredError(PreconditionError):
    """Raised when an operation needs a generation branch and none exists."""

    def __init__(self, operation: str, prefix: str) -> None:
        super().__init__(f"no generation branch matching '{prefix}*'", operation)
        self.prefix = prefix


class AmbiguousGenerationError(CobblerError):
    """Raised when generation recovery finds zero or several candidate branches."""

    def __init__(self, operation: str, candidates: Sequence[str]) -> None:
        self.candidates = list(candidates)
        if self.candidates:
            message = (
                f"expected exactly one generation branch, found {len(self.candidates)}: "
                + ", ".join(self.candidates)
            )
        else:
            message = "expected exactly one generation branch, found none"
        super().__init__(message, operation)


class MergeConflictError(CobblerError):
    """Raised when a merge cannot complete. The merge has been aborted."""

    def __init__(self, source: str, target: str, output: str = "") -> None:
        super().__init__(f"merge of {source} conflicts", "merge", target)
        self.source = source
        self.output = output


class ExternalProcessError(CobblerError):
    """Raised when an external command exits nonzero."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int,
        stderr: str = "",
        operation: str = "",
        target: str = "",
    ) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(
            f"'{' '.join(self.command)}' exited {returncode}: {detail}",
            operation or (self.command[0] if self.command else ""),
            target,
        )


class TaskImportError(CobblerError):
    """Raised when the agent's proposed task list is malformed."""
    pass


class AgentErrorType(Enum):
    """
    Classification of agent CLI errors.

    Used to decide between failing the task and stopping the run.
    """

    AUTH_REQUIRED = auto()      # Credentials missing or rejected
    RATE_LIMIT = auto()         # Usage limits hit
    SERVER_OVERLOADED = auto()  # 529/503 errors
    TIMEOUT = auto()            # Wall-clock budget exceeded
    CLI_CRASH = auto()          # Nonzero exit without a known pattern
    CLI_NOT_FOUND = auto()      # podman or image missing
    UNKNOWN = auto()


class AgentError(CobblerError):
    """
    Base exception for agent invocation errors.

    Includes error type classification for handling decisions.
    """

    def __init__(
        self,
        message: str,
        error_type: AgentErrorType = AgentErrorType.UNKNOWN,
        stderr: str = "",
        returncode: int = -1,
        target: str = "",
    ) -> None:
        super().__init__(message, "agent", target)
        self.error_type = error_type
        self.stderr = stderr
        self.returncode = returncode

    @property
    def requires_user_action(self) -> bool:
        """Check if this error requires user intervention."""
        return self.error_type in (
            AgentErrorType.AUTH_REQUIRED,
            AgentErrorType.CLI_NOT_FOUND,
        )


class AgentInvocationError(AgentError):
    """Raised when the agent exits nonzero."""
    pass


class AgentTimeoutError(AgentError):
    """Raised when the agent exceeds its wall-clock budget."""

    def __init__(self, timeout_seconds: int, target: str = "") -> None:
        super().__init__(
            f"timed out after {timeout_seconds}s",
            error_type=AgentErrorType.TIMEOUT,
            target=target,
        )
        self.timeout_seconds = timeout_seconds


class AgentUnavailableError(AgentError):
    """Raised when the agent runtime or its credentials cannot be validated."""

    def __init__(self, message: str, error_type: AgentErrorType = AgentErrorType.AUTH_REQUIRED) -> None:
        super().__init__(message, error_type=error_type)


class ErrorClassifier:
    """
    Classifies errors from Claude CLI output.

    Uses pattern matching on stderr/stdout to determine error type.
    """

    AUTH_PATTERNS = [
        r"unauthorized",
        r"not\s+logged\s+in",
        r"login\s+required",
        r"authentication\s+required",
        r"invalid\s+api\s+key",
        r"401",
    ]

    RATE_LIMIT_PATTERNS = [
        r"rate.?limit",
        r"usage\s+limit\s+reached",
        r"too\s+many\s+requests",
        r"429",
    ]

    OVERLOAD_PATTERNS = [
        r"529",
        r"overloaded",
        r"503",
        r"service\s+unavailable",
    ]

    NOT_FOUND_PATTERNS = [
        r"image\s+not\s+known",
        r"command\s+not\s+found",
        r"executable\s+file\s+not\s+found",
    ]

    @classmethod
    def classify(cls, stderr: str, stdout: str = "", returncode: int = -1) -> AgentErrorType:
        """
        Classify an agent CLI error based on output.

        Args:
            stderr: Standard error output from CLI
            stdout: Standard output from CLI
            returncode: Process return code

        Returns:
            AgentErrorType classification
        """
        combined = f"{stderr} {stdout}".lower()

        if cls._matches_any(combined, cls.AUTH_PATTERNS):
            return AgentErrorType.AUTH_REQUIRED
        if cls._matches_any(combined, cls.RATE_LIMIT_PATTERNS):
            return AgentErrorType.RATE_LIMIT
        if cls._matches_any(combined, cls.OVERLOAD_PATTERNS):
            return AgentErrorType.SERVER_OVERLOADED
        if cls._matches_any(combined, cls.NOT_FOUND_PATTERNS):
            return AgentErrorType.CLI_NOT_FOUND
        if returncode != 0:
            return AgentErrorType.CLI_CRASH
        return AgentErrorType.UNKNOWN

    @staticmethod
    def _matches_any(text: str, patterns: list[str]) -> bool:
        return any(re.search(pattern, text) for pattern in patterns)


def describe(error: Exception, fallback: Optional[str] = None) -> str:
    """One-line description of an error for history records."""
    text = str(error).strip()
    return text.splitlines()[0] if text else (fallback or type(error).__name__)
