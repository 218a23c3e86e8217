# parallel_runner/transport/build_process.py
"""
The build process: our single job producer.

Spawned as a child process with ENABLE_GATSBY_EXTERNAL_JOBS=true.
IPC is newline-delimited JSON:

- child stdout: one host message per line, ``{"type": ..., "payload": ...}``.
  Lines that are not JSON objects are the build's own output and are
  passed through to our stdout.
- child stdin: one outcome per line (JOB_COMPLETED / JOB_FAILED /
  JOB_NOT_WHITELISTED), written by ``send``.
"""
from __future__ import annotations

import asyncio
import json
import os
import shlex
import sys
from typing import AsyncIterator, Sequence

from parallel_runner.core.models import ProducerEvent
from parallel_runner.infra.logging_config import get_logger

logger = get_logger(__name__)

STREAM_LIMIT = 16 * 1024 * 1024  # longest accepted IPC line


class BuildProcess:
    """ProducerChannel backed by a child process."""

    def __init__(
        self,
        command: Sequence[str] | str,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ):
        self._command = shlex.split(command) if isinstance(command, str) else list(command)
        self._cwd = cwd
        self._env = {**os.environ, "ENABLE_GATSBY_EXTERNAL_JOBS": "true", **(env or {})}
        self._proc: asyncio.subprocess.Process | None = None
        self._write_lock = asyncio.Lock()

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    async def start(self) -> None:
        self._proc = await asyncio.create_subprocess_exec(
            *self._command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            cwd=self._cwd,
            env=self._env,
            limit=STREAM_LIMIT,
        )
        logger.info(f"Build process started: pid={self._proc.pid}, command={' '.join(self._command)}")

    def _require_proc(self) -> asyncio.subprocess.Process:
        if self._proc is None:
            raise RuntimeError("Build process not started. Call start() first.")
        return self._proc

    async def messages(self) -> AsyncIterator[dict]:
        """Yield host messages until the child closes its stdout."""
        proc = self._require_proc()
        while True:
            line = await proc.stdout.readline()
            if not line:
                return

            try:
                message = json.loads(line)
            except (UnicodeDecodeError, json.JSONDecodeError):
                message = None

            if not isinstance(message, dict):
                sys.stdout.write(line.decode("utf-8", errors="replace"))
                sys.stdout.flush()
                continue

            logger.debug(f"Got build message: type={message.get('type')}")
            yield message

    async def send(self, event: ProducerEvent) -> None:
        proc = self._require_proc()
        line = json.dumps(event.to_message(), separators=(",", ":")).encode("utf-8") + b"\n"
        async with self._write_lock:
            proc.stdin.write(line)
            await proc.stdin.drain()

    async def wait(self) -> int:
        return await self._require_proc().wait()

    async def terminate(self) -> None:
        proc = self._require_proc()
        if proc.returncode is None:
            proc.terminate()
            await proc.wait()
