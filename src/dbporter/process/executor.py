"""Secure execution of external database tools.

``SecureProcessExecutor`` runs ``mysqldump``, ``pg_dump``, ``psql`` and
friends without a shell, in their own process group, with a hard timeout,
periodic progress reports and credentials passed out of band (environment
variable or stdin, never argv). Commands are logged only in sanitized form.

Usage:
    from dbporter.process import Credentials, SecureProcessExecutor

    executor = SecureProcessExecutor(default_timeout=1800)
    result = await executor.run(
        ["pg_dump", "--host", "db", "--format", "custom", "--file", "out.dump", "app"],
        credentials=Credentials("secret", env_var="PGPASSWORD"),
    )
    if not result.success:
        print(result.stderr_text)
"""

import asyncio
import logging
import os
import shlex
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from dbporter.errors import BackupError
from dbporter.process.redaction import (
    contains_secret,
    redact_text,
    sanitize_argv,
)

IS_WINDOWS = sys.platform.startswith("win")

ProgressCallback = Callable[[dict[str, Any]], None]


class ProcessState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    SPAWN_FAILED = "spawn_failed"


@dataclass
class Credentials:
    """A password and how to hand it to the child process.

    With ``env_var`` set (``PGPASSWORD``, ``MYSQL_PWD``) the password is
    placed in the child's environment; otherwise it is written to the
    child's stdin as the first line.
    """

    password: str
    env_var: str | None = None

    def __repr__(self) -> str:
        return f"Credentials(password='***', env_var={self.env_var!r})"


@dataclass
class ProcessResult:
    """Outcome of one external command.

    ``command`` is the sanitized argv; ``stderr`` has known secrets masked.
    """

    command: list[str]
    return_code: int | None
    stdout: bytes = b""
    stderr: bytes = b""
    duration_seconds: float = 0.0
    state: ProcessState = ProcessState.COMPLETED
    platform: str = field(default_factory=lambda: sys.platform)

    @property
    def success(self) -> bool:
        return self.state is ProcessState.COMPLETED and self.return_code == 0

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": list(self.command),
            "return_code": self.return_code,
            "duration_seconds": round(self.duration_seconds, 3),
            "state": self.state.value,
            "platform": self.platform,
            "stdout_bytes": len(self.stdout),
            "stderr": self.stderr_text[-2000:],
        }


class SecureProcessExecutor:
    """Run external commands with timeouts, progress and secret hygiene.

    Args:
        default_timeout: Seconds before a command is killed.
        poll_interval: Seconds slept between liveness checks.
        progress_interval: Seconds between progress callbacks.
        chunk_size: Bytes read per pipe read.
        logger: Optional logger.
    """

    def __init__(
        self,
        default_timeout: float = 300,
        poll_interval: float = 0.01,
        progress_interval: float = 5.0,
        chunk_size: int = 8192,
        logger: logging.Logger | None = None,
    ) -> None:
        self.default_timeout = default_timeout
        self.poll_interval = poll_interval
        self.progress_interval = progress_interval
        self.chunk_size = chunk_size
        self.logger = logger or logging.getLogger(__name__)
        self.state = ProcessState.IDLE

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(
        self,
        argv: Sequence[str],
        *,
        credentials: Credentials | None = None,
        env: Mapping[str, str] | None = None,
        stdin_data: bytes | str | None = None,
        timeout: float | None = None,
        cwd: str | os.PathLike | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> ProcessResult:
        """Run ``argv`` to completion.

        Args:
            argv: Program and arguments; no shell is involved.
            credentials: Password delivered via environment or stdin.
            env: Extra environment variables for the child.
            stdin_data: Data written to the child's stdin (after the
                password line, if any).
            timeout: Seconds before the process group is killed.
            cwd: Working directory for the child.
            progress_callback: Called every ``progress_interval`` seconds
                with ``duration_seconds``, ``output_size_bytes`` and
                ``process_running``.

        Returns:
            ProcessResult; a non-zero exit code is not an exception.

        Raises:
            ValueError: If ``argv`` is empty or contains the password.
            BackupError: ``timeout`` when the deadline passes,
                ``strategy_unavailable`` when the program cannot start.
        """
        argv = [str(arg) for arg in argv]
        if not argv:
            raise ValueError("Empty command")
        secrets = [credentials.password] if credentials and credentials.password else []
        if credentials and contains_secret(argv, credentials.password):
            raise ValueError("Passwords must not be passed as command-line arguments")

        child_env = dict(os.environ)
        child_env.update(env or {})
        payload = b""
        if credentials and credentials.password:
            if credentials.env_var:
                child_env[credentials.env_var] = credentials.password
            else:
                payload = credentials.password.encode("utf-8") + b"\n"
        if stdin_data is not None:
            payload += stdin_data.encode("utf-8") if isinstance(stdin_data, str) else stdin_data

        timeout = self.default_timeout if timeout is None else timeout
        display = self.format_command(sanitize_argv(argv, secrets))
        self.logger.debug(f"Executing: {display} (timeout {timeout:g}s)")

        self.state = ProcessState.STARTING
        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if payload else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=child_env,
                cwd=cwd,
                start_new_session=not IS_WINDOWS,
            )
        except (OSError, ValueError) as exc:
            self.state = ProcessState.SPAWN_FAILED
            reason = redact_text(str(exc), secrets)
            self.logger.debug(f"Failed to start {argv[0]}: {reason}")
            raise BackupError.strategy_unavailable(
                argv[0], reason=f"cannot execute {argv[0]}: {reason}"
            ) from exc

        self.state = ProcessState.RUNNING
        stdout = bytearray()
        stderr = bytearray()
        tasks = [
            asyncio.create_task(self._pump(process.stdout, stdout)),
            asyncio.create_task(self._pump(process.stderr, stderr)),
        ]
        if payload:
            tasks.append(asyncio.create_task(self._feed(process.stdin, payload)))

        last_progress = start
        try:
            while process.returncode is None:
                now = time.monotonic()
                elapsed = now - start
                if elapsed > timeout:
                    self._kill(process)
                    await process.wait()
                    raise self._timed_out(display, timeout)
                if progress_callback and now - last_progress >= self.progress_interval:
                    last_progress = now
                    progress_callback({
                        "duration_seconds": round(elapsed, 3),
                        "output_size_bytes": len(stdout),
                        "process_running": True,
                    })
                await asyncio.sleep(self.poll_interval)
            # Descendants that inherited the pipes keep them open after the
            # leader exits; the drain shares the same deadline.
            remaining = max(timeout - (time.monotonic() - start), self.poll_interval)
            try:
                await asyncio.wait_for(asyncio.gather(*tasks), remaining)
            except asyncio.TimeoutError:
                self._kill(process)
                raise self._timed_out(display, timeout) from None
            await process.wait()
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if process.returncode is None:
                self._kill(process)
                await process.wait()
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()

        duration = time.monotonic() - start
        self.state = ProcessState.COMPLETED
        if progress_callback:
            progress_callback({
                "duration_seconds": round(duration, 3),
                "output_size_bytes": len(stdout),
                "process_running": False,
            })
        error_text = redact_text(stderr.decode("utf-8", errors="replace"), secrets)
        self.logger.debug(
            f"Command finished with code {process.returncode} in {duration:.2f}s: {display}"
        )
        return ProcessResult(
            command=sanitize_argv(argv, secrets),
            return_code=process.returncode,
            stdout=bytes(stdout),
            stderr=error_text.encode("utf-8"),
            duration_seconds=duration,
            state=ProcessState.COMPLETED,
        )

    async def _pump(self, reader: asyncio.StreamReader, buffer: bytearray) -> None:
        while True:
            chunk = await reader.read(self.chunk_size)
            if not chunk:
                break
            buffer.extend(chunk)

    async def _feed(self, writer: asyncio.StreamWriter, payload: bytes) -> None:
        try:
            writer.write(payload)
            await writer.drain()
        except (BrokenPipeError, ConnectionResetError):
            self.logger.debug("Child process closed stdin before all input was written")
        finally:
            writer.close()

    def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Kill the child's process group (the child alone on Windows).

        The group is signalled even after the leader has exited, since
        background descendants may still hold the output pipes.
        """
        try:
            if IS_WINDOWS:
                if process.returncode is None:
                    process.kill()
            else:
                os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            self.logger.debug(f"Process group {process.pid} already exited")

    def _timed_out(self, display: str, timeout: float) -> BackupError:
        self.state = ProcessState.TIMED_OUT
        self.logger.warning(f"Command timeout after {timeout:g} seconds: {display}")
        return BackupError.timeout(display, timeout)

    # ------------------------------------------------------------------
    # Environment checks
    # ------------------------------------------------------------------

    async def is_command_available(self, name: str) -> bool:
        """Whether ``name`` resolves on PATH (``which`` / ``where``)."""
        probe = ["where", name] if IS_WINDOWS else ["which", name]
        try:
            result = await self.run(probe, timeout=10)
        except (BackupError, OSError) as exc:
            self.logger.debug(f"Command availability check failed for {name}: {exc}")
            return False
        available = result.success and bool(result.stdout.strip())
        self.logger.debug(f"Command {name} available: {available}")
        return available

    async def test_shell_access(self) -> dict[str, Any]:
        """Run a trivial command and report whether process spawning works."""
        probe = ["cmd", "/c", "echo", "test"] if IS_WINDOWS else ["echo", "test"]
        try:
            result = await self.run(probe, timeout=10)
        except (BackupError, OSError) as exc:
            return {"available": False, "error": str(exc), "platform": sys.platform}
        output = result.stdout_text.strip()
        return {
            "available": result.success and output == "test",
            "test_output": output,
            "platform": sys.platform,
        }

    @staticmethod
    def format_command(argv: Sequence[str]) -> str:
        """Single display string with per-argument platform quoting."""
        if IS_WINDOWS:
            return subprocess.list2cmdline(list(argv))
        return shlex.join(argv)
