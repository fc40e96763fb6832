"""Subprocess-based executor for the external skill CLI."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import replace

from skill_bridge.orchestrator.backend.base import (
    TIMEOUT_EXIT_CODE,
    CommandSpec,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
    to_outcome,
)

logger = logging.getLogger(__name__)

YOLO_FLAG = "--yolo"
VERSION_FLAG = "--version"

Sleeper = Callable[[float], Awaitable[None]]


class LaunchFailure(RuntimeError):
    """Subprocess could not be started; carries a retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class ProcessExecutor:
    """Launch the skill CLI, enforce the step timeout and retry business failures."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        cli_path: str,
        timeout_seconds: float = 300,
        max_attempts: int = 3,
        retry_base_seconds: float = 1.0,
        yolo_mode: bool = False,
        session_env_key: str = "IFLOW_SESSION_ID",
        kill_grace_seconds: float = 2.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.cli_path = cli_path
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self.yolo_mode = yolo_mode
        self.session_env_key = session_env_key
        self.kill_grace_seconds = kill_grace_seconds
        self._sleep = sleep

    def build_command(self, request: ExecutionRequest) -> CommandSpec:
        """Resolve executable and arguments for one invocation."""

        head, prefix = _split_cli_path(self.cli_path)
        args = [*prefix, request.input_text]
        if self.yolo_mode:
            args.append(YOLO_FLAG)
        return CommandSpec(
            executable=head,
            args=tuple(args),
            env={self.session_env_key: request.conversation_id},
        )

    async def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """Run one attempt and return it as a tagged success/failure outcome."""

        return to_outcome(await self._run_request(request))

    async def run_with_retry(
        self,
        request: ExecutionRequest,
        max_attempts: int | None = None,
    ) -> ExecutionResult:
        """Retry non-success results with linear backoff; return the last result.

        Only `LaunchFailure` escapes. Non-transient launch failures are raised
        on the first attempt; transient ones are retried like business failures.
        """

        attempts = max(1, max_attempts if max_attempts is not None else self.max_attempts)
        last_result: ExecutionResult | None = None
        for attempt in range(1, attempts + 1):
            current = replace(request, attempt_number=attempt)
            try:
                last_result = await self._run_request(current)
            except LaunchFailure as error:
                if not error.transient or attempt == attempts:
                    raise
                logger.warning(
                    "Skill launch failed (%d/%d) conversation=%s: %s",
                    attempt,
                    attempts,
                    request.conversation_id,
                    error,
                )
                await self._sleep(self.retry_base_seconds * attempt)
                continue

            if last_result.success:
                return last_result

            logger.warning(
                "Skill run failed (%d/%d) conversation=%s failure=%s exit_code=%s",
                attempt,
                attempts,
                request.conversation_id,
                last_result.failure.value if last_result.failure else None,
                last_result.exit_code,
            )
            if attempt == attempts:
                return last_result
            await self._sleep(self.retry_base_seconds * attempt)

        if last_result is None:
            raise RuntimeError("Retry loop finished without a result.")
        return last_result

    async def run(  # noqa: PLR0913
        self,
        executable: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
        conversation_id: str = "",
        command: str | None = None,
        attempt_number: int = 1,
    ) -> ExecutionResult:
        """Run one subprocess with independent stdout/stderr capture.

        Non-zero exits and timeouts are returned as results. Raises
        `LaunchFailure` only if the process cannot be created.
        """

        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        display_command = command if command is not None else shlex.join([executable, *args])
        process_env = os.environ.copy()
        if env:
            process_env.update(env)

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=process_env,
            )
        except FileNotFoundError as error:
            logger.error("Skill CLI not found: %s", executable)
            raise LaunchFailure(
                f"Skill CLI command not found: {executable}",
                transient=False,
            ) from error
        except PermissionError as error:
            logger.error("Skill CLI not executable: %s", executable)
            raise LaunchFailure(
                f"Skill CLI is not executable: {executable}",
                transient=False,
            ) from error
        except OSError as error:
            logger.error("Skill CLI failed to start: %s", error)
            raise LaunchFailure(f"Skill CLI failed to start: {error}", transient=True) from error

        logger.info(
            "Skill run started conversation=%s attempt=%d pid=%s",
            conversation_id,
            attempt_number,
            process.pid,
        )
        stdout_reader = asyncio.ensure_future(_read_stream(process.stdout))
        stderr_reader = asyncio.ensure_future(_read_stream(process.stderr))

        timed_out = False
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except TimeoutError:
            timed_out = True
            await _terminate_process(process, grace_seconds=self.kill_grace_seconds)

        stdout, stderr = await _collect_output(
            stdout_reader,
            stderr_reader,
            grace_seconds=self.kill_grace_seconds,
        )
        duration_ms = int((time.monotonic() - started) * 1000)

        if timed_out:
            logger.error(
                "Skill run timed out after %ss conversation=%s command=%s",
                timeout,
                conversation_id,
                display_command[:100],
            )
            exit_code: int | None = TIMEOUT_EXIT_CODE
        else:
            exit_code = process.returncode
            if exit_code == 0:
                logger.info(
                    "Skill run succeeded conversation=%s duration_ms=%d",
                    conversation_id,
                    duration_ms,
                )
            else:
                logger.warning(
                    "Skill run exited with code %s conversation=%s stderr=%s",
                    exit_code,
                    conversation_id,
                    stderr[:200],
                )

        return ExecutionResult(
            conversation_id=conversation_id,
            command=display_command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=duration_ms,
            timed_out=timed_out,
            attempt_number=attempt_number,
        )

    async def is_available(self) -> bool:
        """Check whether the CLI starts and answers `--version`."""

        try:
            result = await self._run_probe()
        except LaunchFailure:
            return False
        return result.success or bool(result.stdout.strip())

    async def get_version(self) -> str:
        try:
            result = await self._run_probe()
        except LaunchFailure:
            return "unknown"
        return result.stdout.strip() or "unknown"

    async def _run_probe(self) -> ExecutionResult:
        head, prefix = _split_cli_path(self.cli_path)
        return await self.run(head, [*prefix, VERSION_FLAG], timeout_seconds=30)

    async def _run_request(self, request: ExecutionRequest) -> ExecutionResult:
        spec = self.build_command(request)
        logger.info(
            "Running skill conversation=%s attempt=%d input=%s",
            request.conversation_id,
            request.attempt_number,
            request.input_text[:100],
        )
        return await self.run(
            spec.executable,
            spec.args,
            env=spec.env,
            conversation_id=request.conversation_id,
            command=request.input_text,
            attempt_number=request.attempt_number,
        )


def _split_cli_path(cli_path: str) -> tuple[str, list[str]]:
    argv = shlex.split(cli_path.strip())
    if not argv:
        raise LaunchFailure("Skill CLI path is empty.", transient=False)
    return argv[0], argv[1:]


async def _read_stream(stream: asyncio.StreamReader | None) -> str:
    if stream is None:
        return ""
    data = await stream.read()
    return data.decode("utf-8", errors="replace")


async def _collect_output(
    stdout_reader: asyncio.Future[str],
    stderr_reader: asyncio.Future[str],
    *,
    grace_seconds: float,
) -> tuple[str, str]:
    try:
        stdout, stderr = await asyncio.wait_for(
            asyncio.gather(stdout_reader, stderr_reader),
            timeout=max(grace_seconds, 0.1),
        )
    except TimeoutError:
        # Descendants can keep the pipes open after the direct child is gone.
        logger.warning("Output streams still open after process exit; dropping partial output")
        return "", ""
    return stdout, stderr


async def _terminate_process(process: asyncio.subprocess.Process, *, grace_seconds: float) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
