"""
quiver - Stack orchestration for an external infrastructure engine.

Drive the engine from Python: create stacks, set config, run updates.
"""

from loguru import logger

from quiver.config import ConfigValue, ConfigStore
from quiver.errors import (
    QuiverError,
    ParseError,
    NotFoundError,
    AlreadyExistsError,
    AuthenticationError,
    SpawnError,
    VersionMismatchError,
    MajorVersionMismatchError,
    MinimumVersionError,
    ExecutionError,
    EngineExecutionError,
    ConcurrentUpdateError,
    OperationCancelledError,
    InlineProgramError,
    DuplicateContextError,
    ConfigSetError,
    EventHandlerError,
    StackNotFoundError,
    StackAlreadyExistsError,
    ConfigNotFoundError,
    TagNotFoundError,
    PluginNotFoundError,
    SettingsNotFoundError,
)
from quiver.events import EngineEvent, EventStream
from quiver.program import ContextRegistry, ProgramConfig, RunContext, Secret
from quiver.stack import (
    Stack,
    create_stack,
    select_stack,
    create_or_select_stack,
    fully_qualified_stack_name,
    OutputValue,
    UpResult,
    PreviewResult,
    RefreshResult,
    DestroyResult,
)
from quiver.version import MINIMUM_ENGINE_VERSION, check_version
from quiver.workspace import ProjectSettings, StackSettings, Workspace

__version__ = "0.1.0"

# Silent unless the application calls quiver.log.setup_logging()
logger.disable("quiver")

__all__ = [
    # workspace / stack
    "Workspace",
    "Stack",
    "create_stack",
    "select_stack",
    "create_or_select_stack",
    "fully_qualified_stack_name",
    "ProjectSettings",
    "StackSettings",
    # config / program
    "ConfigValue",
    "ConfigStore",
    "RunContext",
    "ProgramConfig",
    "ContextRegistry",
    "Secret",
    # results / events
    "OutputValue",
    "UpResult",
    "PreviewResult",
    "RefreshResult",
    "DestroyResult",
    "EngineEvent",
    "EventStream",
    # version
    "MINIMUM_ENGINE_VERSION",
    "check_version",
    # errors
    "QuiverError",
    "ParseError",
    "NotFoundError",
    "AlreadyExistsError",
    "AuthenticationError",
    "SpawnError",
    "VersionMismatchError",
    "MajorVersionMismatchError",
    "MinimumVersionError",
    "ExecutionError",
    "EngineExecutionError",
    "ConcurrentUpdateError",
    "OperationCancelledError",
    "InlineProgramError",
    "DuplicateContextError",
    "ConfigSetError",
    "EventHandlerError",
    "StackNotFoundError",
    "StackAlreadyExistsError",
    "ConfigNotFoundError",
    "TagNotFoundError",
    "PluginNotFoundError",
    "SettingsNotFoundError",
]
