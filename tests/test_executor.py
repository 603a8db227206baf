"""Tests for SecureProcessExecutor using real child processes.

The child is always the running Python interpreter, so these tests do not
depend on any database tool being installed.
"""

import asyncio
import logging
import os
import sys
import time
from pathlib import Path

import pytest

from dbporter.errors import BackupError, ErrorKind
from dbporter.process import Credentials, SecureProcessExecutor
from dbporter.process.executor import ProcessState


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


async def _wait_gone(pid: int, seconds: float = 3.0) -> bool:
    """Whether ``pid`` stops running (zombies count as gone) within ``seconds``."""
    deadline = time.monotonic() + seconds
    while time.monotonic() < deadline:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        try:
            state = Path(f"/proc/{pid}/stat").read_text().rsplit(")", 1)[1].split()[0]
        except (OSError, IndexError):
            state = ""
        if state == "Z":
            return True
        await asyncio.sleep(0.05)
    return False


@pytest.fixture
def executor():
    return SecureProcessExecutor(default_timeout=30, progress_interval=0.05)


class TestRun:
    """Test plain command execution."""

    async def test_success(self, executor):
        result = await executor.run(_python("print('hello')"))
        assert result.success
        assert result.return_code == 0
        assert result.stdout_text.strip() == "hello"
        assert executor.state is ProcessState.COMPLETED

    async def test_non_zero_exit_is_a_result(self, executor):
        result = await executor.run(_python("import sys; sys.stderr.write('bad'); sys.exit(3)"))
        assert not result.success
        assert result.return_code == 3
        assert result.stderr_text == "bad"

    async def test_extra_env(self, executor):
        result = await executor.run(
            _python("import os; print(os.environ['DBPORTER_SAMPLE'])"),
            env={"DBPORTER_SAMPLE": "42"},
        )
        assert result.stdout_text.strip() == "42"

    async def test_stdin_data(self, executor):
        result = await executor.run(
            _python("import sys; print(sys.stdin.read().upper())"),
            stdin_data="select 1;",
        )
        assert result.stdout_text.strip() == "SELECT 1;"

    async def test_cwd(self, executor, tmp_path):
        result = await executor.run(_python("import os; print(os.getcwd())"), cwd=tmp_path)
        assert result.stdout_text.strip() == str(tmp_path.resolve())

    async def test_large_output_not_truncated(self, executor):
        result = await executor.run(_python("import sys; sys.stdout.write('x' * 200000)"))
        assert len(result.stdout) == 200000

    async def test_to_dict(self, executor):
        result = await executor.run(_python("pass"))
        data = result.to_dict()
        assert data["return_code"] == 0
        assert data["state"] == "completed"
        assert data["command"][0] == sys.executable


class TestCredentials:
    """Test out-of-band password delivery."""

    async def test_password_via_environment(self, executor):
        result = await executor.run(
            _python("import os, sys; sys.stderr.write('pw=' + os.environ['DBPORTER_PW'])"),
            credentials=Credentials("s3cret", env_var="DBPORTER_PW"),
        )
        assert result.stderr_text == "pw=[HIDDEN]"

    async def test_password_via_stdin_first_line(self, executor):
        result = await executor.run(
            _python("import sys; lines = sys.stdin.read().splitlines(); print(lines[0], len(lines))"),
            credentials=Credentials("s3cret"),
            stdin_data="a\nb\n",
        )
        assert result.stdout_text.strip() == "s3cret 3"

    async def test_password_in_argv_rejected(self, executor):
        with pytest.raises(ValueError, match="command-line"):
            await executor.run(["mysql", "--password=s3cret"], credentials=Credentials("s3cret"))

    def test_repr_hides_password(self):
        assert "s3cret" not in repr(Credentials("s3cret", env_var="PGPASSWORD"))

    async def test_logged_command_has_no_secrets(self, executor, caplog):
        caplog.set_level(logging.DEBUG, logger="dbporter.process.executor")
        argv = _python("pass") + ["--password=argvpass", "mysql://app:urlpass@db/shop"]
        await executor.run(argv, credentials=Credentials("envpass", env_var="DBPORTER_PW"))
        assert "Executing:" in caplog.text
        for secret in ("argvpass", "urlpass", "envpass"):
            assert secret not in caplog.text
        assert "[PASSWORD_HIDDEN]" in caplog.text


class TestFailures:
    """Test timeouts and spawn failures."""

    async def test_empty_command(self, executor):
        with pytest.raises(ValueError, match="Empty command"):
            await executor.run([])

    async def test_timeout_kills_process(self, executor, tmp_path):
        pid_file = tmp_path / "child.pid"
        code = (
            "import os, pathlib, time; "
            f"pathlib.Path({str(pid_file)!r}).write_text(str(os.getpid())); "
            "time.sleep(30)"
        )
        with pytest.raises(BackupError) as exc_info:
            await executor.run(_python(code), timeout=1.5)
        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert executor.state is ProcessState.TIMED_OUT
        assert await _wait_gone(int(pid_file.read_text()))

    @pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX process groups")
    async def test_background_child_holding_pipes_times_out(self, executor, tmp_path):
        """A descendant keeping stdout open cannot outlive the deadline."""
        pid_file = tmp_path / "grandchild.pid"
        code = (
            "import pathlib, subprocess, sys; "
            "p = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)']); "
            f"pathlib.Path({str(pid_file)!r}).write_text(str(p.pid)); "
            "print('started')"
        )
        started = time.monotonic()
        with pytest.raises(BackupError) as exc_info:
            await executor.run(_python(code), timeout=2)
        assert time.monotonic() - started < 6
        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert executor.state is ProcessState.TIMED_OUT
        assert await _wait_gone(int(pid_file.read_text()))

    async def test_missing_program(self, executor):
        with pytest.raises(BackupError) as exc_info:
            await executor.run(["dbporter-no-such-program-xyz", "--version"])
        assert exc_info.value.kind is ErrorKind.STRATEGY_UNAVAILABLE
        assert executor.state is ProcessState.SPAWN_FAILED


class TestProgressAndProbes:
    """Test progress reports and environment probes."""

    async def test_progress_reports(self, executor):
        reports = []
        await executor.run(
            _python("import time; time.sleep(0.4)"),
            progress_callback=reports.append,
        )
        assert len(reports) >= 2
        assert reports[0]["process_running"] is True
        assert reports[-1]["process_running"] is False

    async def test_unknown_command_not_available(self, executor):
        assert await executor.is_command_available("dbporter-no-such-program-xyz") is False

    @pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX echo")
    async def test_shell_access(self, executor):
        report = await executor.test_shell_access()
        assert report["available"] is True
        assert report["test_output"] == "test"

    def test_format_command_quotes(self):
        assert SecureProcessExecutor.format_command(["pg_dump", "my db"]) == "pg_dump 'my db'"
