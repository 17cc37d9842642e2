"""
Supervisor for the analysis sandbox.

Generated code runs in a fresh ``python -I`` process with its own session,
an empty environment and an empty temporary working directory. The child
applies address-space, CPU, file-size, open-file and process limits before
reading the payload (see ``runner.py``); the supervisor enforces the
wall-clock timeout and kills the whole process group on expiry or
cancellation. When configured, the child also runs as an unprivileged uid
and in its own network namespace.
"""

import asyncio
import json
import logging
import os
import signal
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from finsight.config.settings import Settings
from finsight.errors import ExecutionError, ExecutionResourceExceeded, ExecutionTimeout
from finsight.models.prompt import ExecutionOptions
from finsight.models.results import ExecutionResult
from finsight.services.sandbox.validation import validate_result
from finsight.utils.text_processing import truncate

logger = logging.getLogger(__name__)

RUNNER_PATH = Path(__file__).with_name("runner.py")

# Nothing from the host environment leaks into the child
_CHILD_ENV = {
    "PATH": "/usr/bin:/bin",
    "LANG": "C.UTF-8",
    "PYTHONIOENCODING": "utf-8",
}

_RESOURCE_SIGNALS = {signal.SIGKILL, getattr(signal, "SIGXCPU", signal.SIGKILL)}
_STDERR_TAIL = 2000
_STDOUT_PREVIEW = 500


@dataclass(frozen=True)
class SandboxLimits:
    timeout_seconds: float
    memory_mb: int
    cpu_seconds: int


class CodeExecutionSandbox:
    """Runs untrusted analysis code and returns a validated result."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.python_executable = settings.sandbox_python_executable or sys.executable

    def resolve_limits(self, options: ExecutionOptions | None = None) -> SandboxLimits:
        """Requested options capped by the configured ceilings."""
        s = self.settings
        if options is None:
            timeout = s.sandbox_timeout
            memory = s.sandbox_memory_limit_mb
        else:
            timeout = options.timeout / 1000
            memory = options.memory_limit
        timeout = min(timeout, s.sandbox_max_timeout)
        memory = min(memory, s.sandbox_max_memory_limit_mb)
        cpu = max(1, min(s.sandbox_cpu_time_limit, int(timeout) + 1))
        return SandboxLimits(timeout_seconds=timeout, memory_mb=memory, cpu_seconds=cpu)

    def build_command(self, limits: SandboxLimits) -> list[str]:
        """Child argv. With network isolation, ``unshare`` also drops privileges."""
        s = self.settings
        command = [
            self.python_executable,
            "-I",
            str(RUNNER_PATH),
            str(limits.memory_mb),
            str(limits.cpu_seconds),
        ]
        if not s.sandbox_isolate_network:
            return command
        prefix = ["unshare", "--net"]
        if s.sandbox_uid is not None:
            gid = s.sandbox_gid if s.sandbox_gid is not None else s.sandbox_uid
            prefix += ["--setuid", str(s.sandbox_uid), "--setgid", str(gid)]
        return [*prefix, "--", *command]

    def _credentials(self) -> dict[str, Any]:
        s = self.settings
        if s.sandbox_uid is None or s.sandbox_isolate_network:
            return {}
        gid = s.sandbox_gid if s.sandbox_gid is not None else s.sandbox_uid
        return {"user": s.sandbox_uid, "group": gid, "extra_groups": []}

    async def run(
        self,
        code: str,
        context: dict[str, Any],
        limits: SandboxLimits | None = None,
    ) -> ExecutionResult:
        """Execute ``code`` against ``context``.

        Raises:
            ExecutionError: syntax/runtime error, denied operation, bad result.
            ExecutionTimeout: wall-clock limit reached.
            ExecutionResourceExceeded: memory, CPU or output limit reached.
        """
        limits = limits or self.resolve_limits()
        payload = json.dumps(
            {
                "code": code,
                "context": context,
                "allowedModules": list(self.settings.sandbox_allowed_modules),
                "maxCaptureBytes": 64 * 1024,
            },
            default=str,
        ).encode("utf-8")

        with tempfile.TemporaryDirectory(prefix="finsight-sandbox-") as workdir:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(limits),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=workdir,
                env=_CHILD_ENV,
                start_new_session=True,
                **self._credentials(),
            )
            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(payload), timeout=limits.timeout_seconds
                )
            except asyncio.TimeoutError:
                await self._kill(process)
                raise ExecutionTimeout(
                    f"Code execution exceeded {limits.timeout_seconds:g}s",
                    details={"timeoutSeconds": limits.timeout_seconds},
                ) from None
            except asyncio.CancelledError:
                await self._kill(process)
                raise

        return self._interpret(process.returncode, stdout, stderr, limits)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await process.wait()

    def _interpret(
        self,
        returncode: int | None,
        stdout: bytes,
        stderr: bytes,
        limits: SandboxLimits,
    ) -> ExecutionResult:
        stderr_tail = stderr.decode("utf-8", errors="replace")[-_STDERR_TAIL:]

        if len(stdout) > self.settings.sandbox_max_output_bytes:
            raise ExecutionResourceExceeded(
                "Code execution produced too much output",
                details={"outputBytes": len(stdout)},
            )

        if returncode is not None and returncode < 0:
            signum = -returncode
            if signum in _RESOURCE_SIGNALS:
                raise ExecutionResourceExceeded(
                    "Code execution exceeded its resource limits",
                    details={"signal": signum, "memoryMb": limits.memory_mb, "cpuSeconds": limits.cpu_seconds},
                )
            raise ExecutionError(f"Code execution terminated by signal {signum}")

        document = self._parse_output(stdout)
        if document is None:
            if "MemoryError" in stderr_tail:
                raise ExecutionResourceExceeded("Memory limit exceeded", details={"memoryMb": limits.memory_mb})
            logger.warning("Sandbox produced no result (exit %s): %s", returncode, stderr_tail)
            raise ExecutionError("Code execution produced no result", details={"stderr": stderr_tail})

        if not document.get("ok"):
            error_type = document.get("errorType", "Error")
            message = document.get("message", "")
            if error_type == "MemoryError":
                raise ExecutionResourceExceeded("Memory limit exceeded", details={"memoryMb": limits.memory_mb})
            raise ExecutionError(
                f"{error_type}: {message}",
                details={
                    "errorType": error_type,
                    "stdout": truncate(document.get("stdout", ""), _STDOUT_PREVIEW),
                },
            )

        if document.get("stdout"):
            logger.debug("Sandbox stdout: %s", truncate(document["stdout"], _STDOUT_PREVIEW))
        return validate_result(
            document.get("result"),
            max_visualizations=self.settings.sandbox_max_visualizations,
            max_insights=self.settings.sandbox_max_insights,
        )

    @staticmethod
    def _parse_output(stdout: bytes) -> dict[str, Any] | None:
        lines = stdout.decode("utf-8", errors="replace").strip().splitlines()
        if not lines:
            return None
        try:
            document = json.loads(lines[-1])
        except json.JSONDecodeError:
            return None
        return document if isinstance(document, dict) else None
