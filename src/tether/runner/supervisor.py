"""Process supervisor — runs the CLI and reconciles its event stream."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import signal
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from enum import StrEnum
from pathlib import Path

from tether.background_loop import BackgroundLoop
from tether.constants import CLI_NAME, RESERVED_ENV_PREFIX
from tether.runner.framing import MAX_LINE_CHARS, LineFramer
from tether.runner.helpers import elapsed_ms, format_stderr_preview, home_dir
from tether.runner.models import CompleteEvent, RunRequest, RunResult, StreamEvent
from tether.runner.parser import StreamParser
from tether.runner.prompt import PromptRejectedError, sanitize_prompt, validate_prompt

logger = logging.getLogger(__name__)

#: Async callback that receives every stream event of a run.
EventCallback = Callable[[StreamEvent], Awaitable[None]]

#: Seconds between SIGTERM and SIGKILL when a run times out.
DEFAULT_GRACE_PERIOD = 5.0

#: Seconds between liveness log lines while the CLI is running.
DEFAULT_HEARTBEAT_INTERVAL = 30.0

#: Bytes requested per read from the CLI's output pipes.
_READ_CHUNK = 65_536

#: Stderr lines kept for diagnostics.
_STDERR_TAIL_LINES = 50

#: Seconds between checks for a leader that exited with its pipes still open.
_EXIT_POLL_INTERVAL = 0.1

#: Seconds to keep draining stderr once the process has exited.
_STDERR_DRAIN_TIMEOUT = 0.5


class TerminationState(StrEnum):
    """Where a run is in the timeout escalation."""

    RUNNING = "running"
    TERMINATING = "terminating"
    KILLED = "killed"
    EXITED = "exited"


# ------------------------------------------------------------------ #
# Invocation building
# ------------------------------------------------------------------ #


def resolve_executable(home: Path | None = None) -> str:
    """Locate the CLI binary.

    Prefers the native install under ``~/.local/bin``, then whatever is on
    ``PATH``, and finally the bare command name (left for the spawn to
    fail on).  Never raises.
    """
    native = (home or home_dir()) / ".local" / "bin" / CLI_NAME
    if native.is_file() and os.access(native, os.X_OK):
        logger.info("Using native CLI at %s", native)
        return str(native)

    found = shutil.which(CLI_NAME)
    if found:
        logger.warning("Native CLI not found, falling back to %s", found)
        return found

    logger.warning("CLI path lookup failed, using bare %r", CLI_NAME)
    return CLI_NAME


def build_args(prompt: str, cwd: Path | str) -> list[str]:
    """Fixed CLI argument template; only *prompt* and *cwd* vary."""
    return [
        "-p",
        prompt,
        "--output-format",
        "stream-json",
        "--include-partial-messages",
        "--verbose",
        "--add-dir",
        str(cwd),
        "--continue",
        "--dangerously-skip-permissions",
    ]


def build_env(
    environ: Mapping[str, str],
    reserved_prefix: str = RESERVED_ENV_PREFIX,
) -> dict[str, str]:
    """Return a new child environment without any *reserved_prefix* variables.

    Keeps the CLI from detecting (or altering) a parent session's state.
    *environ* itself is left untouched.
    """
    return {k: v for k, v in environ.items() if not k.startswith(reserved_prefix)}


# ------------------------------------------------------------------ #
# Supervisor
# ------------------------------------------------------------------ #


class ProcessSupervisor:
    """Runs one CLI process per request and streams its events.

    Every call to :meth:`run` produces exactly one :class:`RunResult`,
    which is also delivered as the final ``complete`` event.  Failures
    after the prompt gate (spawn errors, crashes, timeouts) are reported
    through the result rather than raised.
    """

    def __init__(
        self,
        executable: str | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        reserved_prefix: str = RESERVED_ENV_PREFIX,
        max_line_chars: int = MAX_LINE_CHARS,
    ) -> None:
        self._executable = executable or resolve_executable()
        self._grace_period = grace_period
        self._heartbeat_interval = heartbeat_interval
        self._reserved_prefix = reserved_prefix
        self._max_line_chars = max_line_chars

    @property
    def executable(self) -> str:
        return self._executable

    async def run(
        self,
        request: RunRequest,
        on_event: EventCallback | None = None,
    ) -> RunResult:
        """Run the CLI for *request* and return its result.

        Raises:
            PromptRejectedError: If the prompt fails validation.  Nothing
                is spawned in that case.
        """
        reason = validate_prompt(request.prompt)
        if reason is not None:
            raise PromptRejectedError(reason)

        prompt = sanitize_prompt(request.prompt)
        parser = StreamParser()
        start = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                self._executable,
                *build_args(prompt, request.cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(request.cwd),
                env=build_env(os.environ, self._reserved_prefix),
                start_new_session=True,
            )
        except OSError as exc:
            logger.error("Failed to start CLI %s: %s", self._executable, exc)
            complete = parser.finish(
                success=False,
                exit_code=None,
                timed_out=False,
                duration_ms=elapsed_ms(start),
                fallback_output=f"Failed to start the CLI: {exc}",
            )
            await _deliver(on_event, complete)
            return complete.result

        logger.info(
            "CLI started: pid=%s, cwd=%s, prompt_length=%d",
            proc.pid,
            request.cwd,
            len(prompt),
        )
        run = _SupervisedRun(
            proc,
            parser,
            timeout=request.timeout,
            grace_period=self._grace_period,
            max_line_chars=self._max_line_chars,
            on_event=on_event,
        )
        complete = await run.supervise(self._heartbeat_interval)
        await _deliver(on_event, complete)
        return complete.result


class _SupervisedRun:
    """State for a single spawned process."""

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        parser: StreamParser,
        *,
        timeout: float,
        grace_period: float,
        max_line_chars: int,
        on_event: EventCallback | None,
    ) -> None:
        self._proc = proc
        self._parser = parser
        self._timeout = timeout
        self._grace_period = grace_period
        self._max_line_chars = max_line_chars
        self._on_event = on_event
        self._start = time.monotonic()
        self._terminal: CompleteEvent | None = None
        self._stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        self.state = TerminationState.RUNNING
        self.termination_sent = False
        self.bytes_read = 0

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._start

    @property
    def text_length(self) -> int:
        return len(self._parser.accumulated_text)

    async def supervise(self, heartbeat_interval: float) -> CompleteEvent:
        """Stream output until exit, enforcing the timeout; return ``complete``."""
        liveness = _LivenessLog(heartbeat_interval, self)
        await liveness.start()
        watchdog = asyncio.create_task(self._enforce_timeout())
        stderr_task = asyncio.create_task(self._read_stderr())
        returncode: int | None = None
        try:
            await self._pump_stdout()
            returncode = self._proc.returncode
            if returncode is None:
                returncode = await self._proc.wait()
            self.state = TerminationState.EXITED
            await asyncio.wait({stderr_task}, timeout=_STDERR_DRAIN_TIMEOUT)
        finally:
            watchdog.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watchdog
            await liveness.cancel()
            if not stderr_task.done():
                stderr_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await stderr_task
            if self.state is not TerminationState.EXITED:
                # Interrupted from outside; don't leave the CLI behind.
                _kill_process_group(self._proc)

        duration = elapsed_ms(self._start)
        logger.info(
            "CLI exited: pid=%s, exit_code=%s, timed_out=%s, duration=%dms, text=%d chars",
            self.pid,
            returncode,
            self.termination_sent,
            duration,
            self.text_length,
        )

        if self._terminal is not None:
            reported = self._terminal.result
            result = reported.model_copy(
                update={
                    "success": reported.success and not self.termination_sent,
                    "exit_code": returncode,
                    "timed_out": self.termination_sent,
                }
            )
            return CompleteEvent(result=result)

        success = not self.termination_sent and returncode == 0
        fallback = "" if success else format_stderr_preview("\n".join(self._stderr_tail))
        return self._parser.finish(
            success=success,
            exit_code=returncode,
            timed_out=self.termination_sent,
            duration_ms=duration,
            fallback_output=fallback,
        )

    # ------------------------------------------------------------------ #
    # Output pumps
    # ------------------------------------------------------------------ #

    async def _pump_stdout(self) -> None:
        """Read stdout until EOF, or until the result is in and the leader exited.

        A background grandchild can inherit the pipe and hold it open long
        after the CLI itself is gone; once the terminal ``result`` record
        has arrived, the leader's exit is enough.
        """
        reader = asyncio.create_task(self._read_stdout())
        try:
            while True:
                done, _ = await asyncio.wait({reader}, timeout=_EXIT_POLL_INTERVAL)
                if done:
                    reader.result()
                    return
                if self._terminal is not None and self._proc.returncode is not None:
                    logger.info(
                        "CLI pid=%s exited after its result with stdout still open",
                        self.pid,
                    )
                    return
        finally:
            if not reader.done():
                reader.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reader

    async def _read_stdout(self) -> None:
        stdout = self._proc.stdout
        if stdout is None:
            return
        framer = LineFramer(self._max_line_chars)
        try:
            while True:
                chunk = await stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                self.bytes_read += len(chunk)
                for line in framer.feed(chunk):
                    await self._handle_line(line)
        except Exception as exc:
            logger.error("Error reading CLI stdout (pid=%s): %s", self.pid, exc)
            return
        tail = framer.flush()
        if tail is not None:
            await self._handle_line(tail)

    async def _handle_line(self, line: str) -> None:
        for event in self._parser.feed(line):
            if isinstance(event, CompleteEvent):
                # Held back until the process exits so the exit code is known.
                self._terminal = event
                continue
            await _deliver(self._on_event, event)

    async def _read_stderr(self) -> None:
        stderr = self._proc.stderr
        if stderr is None:
            return
        framer = LineFramer(self._max_line_chars)
        while True:
            chunk = await stderr.read(_READ_CHUNK)
            if not chunk:
                break
            for line in framer.feed(chunk):
                self._record_stderr(line)
        tail = framer.flush()
        if tail is not None:
            self._record_stderr(tail)

    def _record_stderr(self, line: str) -> None:
        if not line.strip():
            return
        logger.info("CLI stderr: %s", line.rstrip())
        self._stderr_tail.append(line)

    # ------------------------------------------------------------------ #
    # Timeout escalation
    # ------------------------------------------------------------------ #

    async def _enforce_timeout(self) -> None:
        """RUNNING → (timeout) SIGTERM → (grace period) SIGKILL to the group."""
        await asyncio.sleep(self._timeout)
        logger.warning(
            "CLI pid=%s exceeded %.0fs timeout, sending SIGTERM", self.pid, self._timeout
        )
        try:
            self._proc.terminate()
        except ProcessLookupError:
            return
        self.termination_sent = True
        self.state = TerminationState.TERMINATING

        await asyncio.sleep(self._grace_period)
        logger.warning(
            "CLI pid=%s still alive %.0fs after SIGTERM, sending SIGKILL",
            self.pid,
            self._grace_period,
        )
        self.state = TerminationState.KILLED
        _kill_process_group(self._proc)


class _LivenessLog(BackgroundLoop):
    """Logs a progress line on a fixed interval while a run is alive."""

    def __init__(self, interval: float, run: _SupervisedRun) -> None:
        super().__init__(interval)
        self._run = run

    async def _tick(self) -> None:
        logger.info(
            "Waiting on CLI pid=%s: %ds elapsed, %d bytes read, text=%d chars",
            self._run.pid,
            int(self._run.elapsed),
            self._run.bytes_read,
            self._run.text_length,
        )


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the process group led by *proc*; an exited group is a no-op."""
    with contextlib.suppress(ProcessLookupError, PermissionError):
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()


async def _deliver(on_event: EventCallback | None, event: StreamEvent) -> None:
    if on_event is None:
        return
    try:
        await on_event(event)
    except Exception:
        logger.exception("Stream event callback failed on %s", event.type)
