"""quiver.runner - Engine subprocess execution and inline program serving."""

from quiver.runner.command import CommandRunner, CommandResult
from quiver.runner.server import ProgramServer

__all__ = ["CommandRunner", "CommandResult", "ProgramServer"]
