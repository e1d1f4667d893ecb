"""
quiver.runner.command - Engine subprocess execution.

Every engine invocation is one subprocess:

    runner = CommandRunner(["quiver-engine"], env={"QUIVER_CONFIG_PASSPHRASE": "x"})
    result = runner.run(["stack", "ls", "--json"], cwd=work_dir)

stdout and stderr are drained by reader threads so a chatty engine
never blocks on a full pipe. A non-zero exit raises ExecutionError
with both streams attached. Setting the cancel event terminates the
engine; whatever output was captured so far is returned with
cancelled=True.
"""

from __future__ import annotations

import os
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, Mapping, Sequence

from loguru import logger

from quiver.errors import (
    DuplicateContextError,
    EventHandlerError,
    ExecutionError,
    InlineProgramError,
    SpawnError,
    classify,
)
from quiver.program import ContextRegistry, Program
from quiver.runner.server import ProgramServer


# Seconds between SIGTERM and SIGKILL on cancellation
TERMINATE_GRACE = 5.0

_BASE_ENV = {
    "QUIVER_SKIP_UPDATE_CHECK": "true",
}


@dataclass
class CommandResult:
    """Outcome of one engine invocation."""
    args: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    cancelled: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.cancelled


@dataclass
class _Capture:
    lines: list[str] = field(default_factory=list)
    handler_error: Exception | None = None

    @property
    def text(self) -> str:
        return "".join(self.lines)


def _drain(stream: IO[str], capture: _Capture, on_line: Callable[[str], None] | None) -> None:
    for line in iter(stream.readline, ""):
        capture.lines.append(line)
        if on_line is None or capture.handler_error is not None:
            continue
        try:
            on_line(line.rstrip("\n"))
        except Exception as e:
            # Keep draining so the engine never blocks on a full pipe
            capture.handler_error = e
    stream.close()


class CommandRunner:
    """Spawns the engine with a controlled environment."""

    def __init__(self, command: Sequence[str], env: Mapping[str, str] | None = None):
        if not command:
            raise ValueError("engine command must not be empty")
        self.command = list(command)
        self.env = dict(env or {})

    def build_env(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        """Process environment overlaid with runner and per-call values."""
        env = dict(os.environ)
        env.update(_BASE_ENV)
        env.update(self.env)
        if extra:
            env.update(extra)
        return env

    def run(
        self,
        args: Sequence[str],
        cwd: str | Path,
        env: Mapping[str, str] | None = None,
        stdin: str | None = None,
        on_output: Callable[[str], None] | None = None,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run the engine to completion.

        Raises:
            SpawnError: the engine binary could not be started
            ExecutionError: the engine exited non-zero (or a subclass
                picked from stderr, e.g. StackNotFoundError)
            EventHandlerError: on_output raised; raised once the engine has
                exited, the rest of its output is still captured
        """
        cmd = self.command + list(args)
        logger.debug("exec {} (cwd={})", " ".join(cmd), cwd)
        started = time.monotonic()

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(cwd),
                env=self.build_env(env),
                stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            raise SpawnError(f"could not launch engine '{self.command[0]}': {e}", cmd) from e

        out, err = _Capture(), _Capture()
        readers = [
            threading.Thread(target=_drain, args=(proc.stdout, out, on_output), daemon=True),
            threading.Thread(target=_drain, args=(proc.stderr, err, None), daemon=True),
        ]
        for t in readers:
            t.start()

        if stdin is not None:
            try:
                proc.stdin.write(stdin)
                proc.stdin.close()
            except BrokenPipeError:
                logger.debug("engine closed stdin before reading it")

        cancelled = self._wait(proc, cancel, timeout, started)

        for t in readers:
            t.join()

        result = CommandResult(
            args=cmd,
            exit_code=proc.returncode,
            stdout=out.text,
            stderr=err.text,
            cancelled=cancelled,
            duration=time.monotonic() - started,
        )
        if not cancelled and result.exit_code != 0:
            raise classify(ExecutionError(
                command=cmd,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            ))
        if out.handler_error is not None:
            raise EventHandlerError(
                f"output handler raised: {out.handler_error!r}",
            ) from out.handler_error
        if cancelled:
            logger.debug("cancelled {} after {:.2f}s", cmd[len(self.command)], result.duration)
        return result

    def _wait(
        self,
        proc: subprocess.Popen,
        cancel: threading.Event | None,
        timeout: float | None,
        started: float,
    ) -> bool:
        """Wait for exit; returns True when the process was cancelled."""
        while True:
            try:
                proc.wait(timeout=0.05)
                return False
            except subprocess.TimeoutExpired:
                pass
            expired = timeout is not None and time.monotonic() - started > timeout
            if (cancel is not None and cancel.is_set()) or expired:
                _terminate(proc)
                return True

    def run_program(
        self,
        args: Sequence[str],
        cwd: str | Path,
        program: Program,
        project: str,
        stack: str,
        registry: ContextRegistry | None = None,
        **kwargs,
    ) -> CommandResult:
        """Run the engine with an inline program served over a callback server.

        The server is up before the engine starts and is shut down on
        every exit path. A program failure becomes the operation's
        terminal error even if the engine itself swallowed it.
        """
        with ProgramServer(program, project, stack, registry=registry) as server:
            try:
                result = self.run([*args, "--client", server.address], cwd, **kwargs)
            except ExecutionError as e:
                if server.error is not None:
                    raise _program_error(e, server) from server.error
                raise
        if server.error is not None and not result.cancelled:
            raise _program_error(
                ExecutionError(
                    command=result.args,
                    exit_code=result.exit_code,
                    stdout=result.stdout,
                    stderr=result.stderr,
                ),
                server,
            ) from server.error
        return result


def _program_error(err: ExecutionError, server: ProgramServer) -> ExecutionError:
    if isinstance(server.error, DuplicateContextError):
        return DuplicateContextError.wrap(err, f"{server.error}\n{err.stderr}")
    return InlineProgramError.wrap(
        err,
        f"inline program failed: {server.error!r}\n{server.error_text}",
        program_error=server.error,
    )


def _terminate(proc: subprocess.Popen) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
