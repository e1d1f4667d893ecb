"""
quiver.stack.stack - Stack lifecycle operations.

A Stack binds a name to a Workspace and runs the engine's lifecycle
verbs against it:

    stack = create_or_select_stack("dev", work_dir="./infra")
    stack.set_config("bar", "abc")
    res = stack.up(on_event=print)
    res.outputs["url"].value

Each operation is one engine subprocess. Progress events are tailed
from a dedicated event log and handed to `on_event` while the engine
runs; the result is returned once it exits.
"""

from __future__ import annotations

import json
import threading
from typing import Any, Callable, Mapping, Sequence

from loguru import logger

from quiver.config import ConfigDiff, ConfigMap, ConfigValue
from quiver.errors import (
    EngineExecutionError,
    ExecutionError,
    OperationCancelledError,
    SettingsNotFoundError,
    StackAlreadyExistsError,
    StackNotFoundError,
)
from quiver.events import EventCollector, EventHandler, EventStream
from quiver.program import Program
from quiver.runner.command import CommandResult
from quiver.stack.names import parse_stack_name
from quiver.stack.results import (
    DestroyResult,
    OutputMap,
    PreviewResult,
    RefreshResult,
    UpdateSummary,
    UpResult,
)
from quiver.workspace.models import Deployment
from quiver.workspace.workspace import Workspace


USER_AGENT = "quiver-automation"

OutputHandler = Callable[[str], None]


def _operation_flags(
    message: str | None = None,
    target: Sequence[str] | None = None,
    parallel: int | None = None,
    expect_no_changes: bool = False,
    diff: bool = False,
    replace: Sequence[str] | None = None,
    target_dependents: bool = False,
) -> list[str]:
    args: list[str] = []
    if message:
        args.extend(["--message", message])
    for urn in target or ():
        args.extend(["--target", urn])
    for urn in replace or ():
        args.extend(["--replace", urn])
    if target_dependents:
        args.append("--target-dependents")
    if parallel is not None:
        args.extend(["--parallel", str(parallel)])
    if expect_no_changes:
        args.append("--expect-no-changes")
    if diff:
        args.append("--diff")
    return args


class Stack:
    """A named stack inside a workspace.

    Use Stack.create / Stack.select / Stack.create_or_select rather than
    the constructor; they make sure the stack exists in the backend.
    """

    def __init__(self, name: str, workspace: Workspace):
        parse_stack_name(name)
        self._name = name
        self.workspace = workspace

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"Stack(name={self._name!r}, work_dir={str(self.workspace.work_dir)!r})"

    @classmethod
    def create(cls, name: str, workspace: Workspace) -> Stack:
        """Create a new stack.

        Raises:
            StackAlreadyExistsError: a stack with this name exists
        """
        parse_stack_name(name)
        workspace.create_stack(name)
        return cls(name, workspace)

    @classmethod
    def select(cls, name: str, workspace: Workspace) -> Stack:
        """Select an existing stack.

        Raises:
            StackNotFoundError: no stack with this name
        """
        parse_stack_name(name)
        workspace.select_stack(name)
        return cls(name, workspace)

    @classmethod
    def create_or_select(cls, name: str, workspace: Workspace) -> Stack:
        parse_stack_name(name)
        try:
            workspace.select_stack(name)
        except StackNotFoundError:
            try:
                workspace.create_stack(name)
            except StackAlreadyExistsError:
                # Lost a race with another creator
                workspace.select_stack(name)
        return cls(name, workspace)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # LIFECYCLE
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def up(
        self,
        message: str | None = None,
        target: Sequence[str] | None = None,
        parallel: int | None = None,
        expect_no_changes: bool = False,
        diff: bool = False,
        replace: Sequence[str] | None = None,
        target_dependents: bool = False,
        user_agent: str | None = None,
        on_event: EventHandler | None = None,
        on_output: OutputHandler | None = None,
        cancel: threading.Event | None = None,
        program: Program | None = None,
    ) -> UpResult:
        """Apply the program's desired state."""
        flags = _operation_flags(
            message, target, parallel, expect_no_changes, diff, replace, target_dependents,
        )
        result, _ = self._run_operation(
            ["up", "--yes", "--skip-preview", *flags],
            user_agent, on_event, on_output, cancel, program,
        )
        return UpResult(
            stdout=result.stdout,
            stderr=result.stderr,
            summary=self._latest_summary("up"),
            outputs=self.outputs(),
        )

    def preview(
        self,
        message: str | None = None,
        target: Sequence[str] | None = None,
        parallel: int | None = None,
        expect_no_changes: bool = False,
        diff: bool = False,
        replace: Sequence[str] | None = None,
        target_dependents: bool = False,
        user_agent: str | None = None,
        on_event: EventHandler | None = None,
        on_output: OutputHandler | None = None,
        cancel: threading.Event | None = None,
        program: Program | None = None,
    ) -> PreviewResult:
        """Compute the change plan without applying it."""
        flags = _operation_flags(
            message, target, parallel, expect_no_changes, diff, replace, target_dependents,
        )
        result, collector = self._run_operation(
            ["preview", *flags], user_agent, on_event, on_output, cancel, program,
        )
        summary = collector.summary
        if summary is None:
            raise EngineExecutionError(
                f"preview of stack '{self.name}' finished without a summary event",
                command=result.args,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return PreviewResult(
            stdout=result.stdout,
            stderr=result.stderr,
            change_summary=dict(summary.resource_changes),
        )

    def refresh(
        self,
        message: str | None = None,
        target: Sequence[str] | None = None,
        parallel: int | None = None,
        expect_no_changes: bool = False,
        user_agent: str | None = None,
        on_event: EventHandler | None = None,
        on_output: OutputHandler | None = None,
        cancel: threading.Event | None = None,
    ) -> RefreshResult:
        """Reconcile recorded state with the real infrastructure."""
        flags = _operation_flags(message, target, parallel, expect_no_changes)
        result, _ = self._run_operation(
            ["refresh", "--yes", "--skip-preview", *flags],
            user_agent, on_event, on_output, cancel, None,
        )
        return RefreshResult(
            stdout=result.stdout,
            stderr=result.stderr,
            summary=self._latest_summary("refresh"),
        )

    def destroy(
        self,
        message: str | None = None,
        target: Sequence[str] | None = None,
        parallel: int | None = None,
        target_dependents: bool = False,
        user_agent: str | None = None,
        on_event: EventHandler | None = None,
        on_output: OutputHandler | None = None,
        cancel: threading.Event | None = None,
    ) -> DestroyResult:
        """Delete every resource of the stack. The stack itself stays."""
        flags = _operation_flags(message, target, parallel, target_dependents=target_dependents)
        result, _ = self._run_operation(
            ["destroy", "--yes", "--skip-preview", *flags],
            user_agent, on_event, on_output, cancel, None,
        )
        return DestroyResult(
            stdout=result.stdout,
            stderr=result.stderr,
            summary=self._latest_summary("destroy"),
        )

    def _run_operation(
        self,
        verb_args: list[str],
        user_agent: str | None,
        on_event: EventHandler | None,
        on_output: OutputHandler | None,
        cancel: threading.Event | None,
        program: Program | None,
    ) -> tuple[CommandResult, EventCollector]:
        ws = self.workspace
        program = program or ws.program
        log_path = ws.state_path(".jsonl")
        args = [
            *verb_args,
            "--exec-kind", "auto.inline" if program is not None else "auto.local",
            "--exec-agent", user_agent or USER_AGENT,
            "--event-log", str(log_path),
            "--stack", self.name,
        ]
        logger.debug("{} {}", verb_args[0], self.name)

        done = threading.Event()
        collector = EventStream(log_path, done).dispatch(on_event)
        try:
            try:
                if program is not None:
                    result = ws.run_program(
                        args, program, self.name, on_output=on_output, cancel=cancel,
                    )
                else:
                    result = ws.run(args, on_output=on_output, cancel=cancel)
            finally:
                done.set()
                collector.join()
        except EngineExecutionError:
            raise
        except ExecutionError as e:
            raise EngineExecutionError.wrap(e) from e
        finally:
            log_path.unlink(missing_ok=True)

        if result.cancelled:
            raise OperationCancelledError(
                f"{verb_args[0]} of stack '{self.name}' was cancelled",
                command=result.args,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        collector.raise_for_handler()
        return result, collector

    def _latest_summary(self, verb: str) -> UpdateSummary:
        entries = self.history(page_size=1)
        if not entries:
            raise EngineExecutionError(
                f"{verb} of stack '{self.name}' left no history entry",
            )
        return entries[0]

    def cancel(self) -> None:
        """Cancel the update currently running against this stack, if any."""
        self.workspace.run(["cancel", "--yes", "--stack", self.name])

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # STATE
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def outputs(self) -> OutputMap:
        return self.workspace.stack_outputs(self.name)

    def history(self, page_size: int | None = None, page: int | None = None) -> list[UpdateSummary]:
        """Past operations, most recent first."""
        args = ["stack", "history", "--json", "--show-secrets", "--stack", self.name]
        if page_size is not None:
            args.extend(["--page-size", str(page_size), "--page", str(page or 1)])
        result = self.workspace.run(args)
        return [UpdateSummary.from_dict(d) for d in json.loads(result.stdout or "[]")]

    def info(self) -> UpdateSummary | None:
        """The most recent history entry, or None for a stack never updated."""
        entries = self.history(page_size=1)
        return entries[0] if entries else None

    def export_stack(self) -> Deployment:
        return self.workspace.export_stack(self.name)

    def import_stack(self, state: Deployment) -> None:
        self.workspace.import_stack(self.name, state)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # CONFIG / TAGS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def get_config(self, key: str, path: bool = False) -> ConfigValue:
        return self.workspace.get_config(self.name, key, path=path)

    def get_all_config(self) -> ConfigMap:
        return self.workspace.get_all_config(self.name)

    def set_config(self, key: str, value: Any, path: bool = False) -> None:
        self.workspace.set_config(self.name, key, value, path=path)

    def set_all_config(self, values: Mapping[str, Any], path: bool = False) -> None:
        self.workspace.set_all_config(self.name, values, path=path)

    def remove_config(self, key: str, path: bool = False) -> None:
        self.workspace.remove_config(self.name, key, path=path)

    def remove_all_config(self, keys: list[str], path: bool = False) -> None:
        self.workspace.remove_all_config(self.name, keys, path=path)

    def refresh_config(self) -> ConfigMap:
        return self.workspace.refresh_config(self.name)

    def diff_config(self, desired: Mapping[str, Any]) -> ConfigDiff:
        return self.workspace.diff_config(self.name, desired)

    def get_tag(self, key: str) -> str:
        return self.workspace.get_tag(self.name, key)

    def set_tag(self, key: str, value: str) -> None:
        self.workspace.set_tag(self.name, key, value)

    def remove_tag(self, key: str) -> None:
        self.workspace.remove_tag(self.name, key)

    def list_tags(self) -> dict[str, str]:
        return self.workspace.list_tags(self.name)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# HELPERS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
def _workspace(
    work_dir: str | None,
    project_name: str | None,
    program: Program | None,
    **opts,
) -> Workspace:
    ws = Workspace(work_dir=work_dir, program=program, **opts)
    if program is None:
        return ws
    if project_name is not None:
        ws.ensure_project(project_name)
        return ws
    # Settings on disk may still name the project
    try:
        ws.project_settings()
    except SettingsNotFoundError as e:
        raise ValueError(
            "project_name is required for an inline program without project settings"
        ) from e
    return ws


def create_stack(
    stack_name: str,
    work_dir: str | None = None,
    project_name: str | None = None,
    program: Program | None = None,
    **opts,
) -> Stack:
    """Create a stack in a local project directory or for an inline program."""
    return Stack.create(stack_name, _workspace(work_dir, project_name, program, **opts))


def select_stack(
    stack_name: str,
    work_dir: str | None = None,
    project_name: str | None = None,
    program: Program | None = None,
    **opts,
) -> Stack:
    return Stack.select(stack_name, _workspace(work_dir, project_name, program, **opts))


def create_or_select_stack(
    stack_name: str,
    work_dir: str | None = None,
    project_name: str | None = None,
    program: Program | None = None,
    **opts,
) -> Stack:
    return Stack.create_or_select(stack_name, _workspace(work_dir, project_name, program, **opts))
