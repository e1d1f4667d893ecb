"""
quiver.errors - Error taxonomy.

Every error raised by quiver derives from QuiverError. Errors produced
by a failed engine invocation also derive from ExecutionError and carry
the captured stdout/stderr so callers can diagnose the failure.
"""

from __future__ import annotations

import re
from typing import Sequence


class QuiverError(Exception):
    """Base class for quiver errors."""
    pass


class ParseError(QuiverError):
    """Malformed version string, settings file or event record."""
    pass


class NotFoundError(QuiverError):
    pass


class AlreadyExistsError(QuiverError):
    pass


class AuthenticationError(QuiverError):
    """Backend identity could not be determined."""
    pass


class SpawnError(QuiverError):
    """The engine binary could not be launched."""

    def __init__(self, message: str, command: Sequence[str] | None = None):
        super().__init__(message)
        self.command = list(command or [])


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# VERSION
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
class VersionMismatchError(QuiverError):
    """Installed engine is not compatible with this library."""
    pass


class MajorVersionMismatchError(VersionMismatchError):
    pass


class MinimumVersionError(VersionMismatchError):
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# EXECUTION
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
class ExecutionError(QuiverError):
    """The engine exited with a non-zero status."""

    def __init__(
        self,
        message: str = "",
        *,
        command: Sequence[str] | None = None,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        self.command = list(command or [])
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        if not message:
            message = (
                f"code: {exit_code}\n"
                f" stdout: {stdout}\n"
                f" stderr: {stderr}"
            )
        super().__init__(message)

    @classmethod
    def wrap(cls, err: ExecutionError, message: str = "", **extra):
        """Re-raise an execution error as a more specific kind."""
        new = cls(
            message or str(err),
            command=err.command,
            exit_code=err.exit_code,
            stdout=err.stdout,
            stderr=err.stderr,
        )
        for key, value in extra.items():
            setattr(new, key, value)
        return new


class EngineExecutionError(ExecutionError):
    """A stack operation failed inside the engine."""
    pass


class ConcurrentUpdateError(EngineExecutionError):
    """Another update holds the backend lock for this stack."""
    pass


class OperationCancelledError(EngineExecutionError):
    """The operation was cancelled; partial output is attached."""
    pass


class InlineProgramError(EngineExecutionError):
    """The in-process program raised while the engine was running it."""

    def __init__(self, message: str = "", *, program_error: BaseException | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.program_error = program_error


class DuplicateContextError(EngineExecutionError):
    """Two run contexts claimed the same session."""
    pass


class ConfigSetError(ExecutionError):
    """A bulk config write failed; ``keys`` lists every attempted key."""

    def __init__(self, message: str = "", *, keys: Sequence[str] = (), **kwargs):
        super().__init__(message, **kwargs)
        self.keys = list(keys)


class EventHandlerError(QuiverError):
    """The caller's event handler raised while processing an event."""

    def __init__(self, message: str, event=None):
        super().__init__(message)
        self.event = event


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# NOT FOUND / ALREADY EXISTS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
class StackNotFoundError(NotFoundError, ExecutionError):
    pass


class StackAlreadyExistsError(AlreadyExistsError, ExecutionError):
    pass


class ConfigNotFoundError(NotFoundError, ExecutionError):
    pass


class TagNotFoundError(NotFoundError, ExecutionError):
    pass


class PluginNotFoundError(NotFoundError):
    pass


class SettingsNotFoundError(NotFoundError):
    pass


_NOT_FOUND = re.compile(r"no stack named.*found")
_ALREADY_EXISTS = re.compile(r"stack '.*' already exists")
_CONFLICT = "[409] Conflict: Another update is currently in progress."


def classify(err: ExecutionError) -> ExecutionError:
    """Map an engine failure to a specific error kind by its stderr."""
    if _NOT_FOUND.search(err.stderr):
        return StackNotFoundError.wrap(err)
    if _ALREADY_EXISTS.search(err.stderr):
        return StackAlreadyExistsError.wrap(err)
    if _CONFLICT in err.stderr:
        return ConcurrentUpdateError.wrap(err)
    return err
