"""Lifecycle of one stdio worker process owned by a single bridge interaction."""

from __future__ import annotations

import codecs
import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Mapping, Sequence

import anyio
from anyio.abc import ByteReceiveStream, Process

LOGGER = logging.getLogger("confluence.worker")

TERMINATE_GRACE = 2.0


class WorkerState(str, Enum):
    SPAWNED = "spawned"
    RUNNING = "running"
    CLOSED = "closed"


@dataclass(frozen=True)
class WorkerOutput:
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


class WorkerProcess:
    def __init__(self, process: Process) -> None:
        self.process = process
        self._started = False

    @classmethod
    async def spawn(cls, command: Sequence[str], env: Mapping[str, str] | None = None) -> WorkerProcess:
        process = await anyio.open_process(
            list(command),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(env) if env is not None else None,
        )
        LOGGER.debug("Spawned worker pid=%s", process.pid)
        return cls(process)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def state(self) -> WorkerState:
        if self.process.returncode is not None:
            return WorkerState.CLOSED
        return WorkerState.RUNNING if self._started else WorkerState.SPAWNED

    async def write_input(self, data: bytes) -> None:
        """Write the single request and close stdin to signal end-of-request."""

        self._started = True
        stdin = self.process.stdin
        if stdin is None:
            return
        try:
            await stdin.send(data)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as exc:
            # The worker may already have exited; its output decides the outcome.
            LOGGER.debug("Worker pid=%s stopped accepting input: %s", self.pid, exc)
        finally:
            await self.close_input()

    async def close_input(self) -> None:
        stdin = self.process.stdin
        if stdin is None:
            return
        try:
            await stdin.aclose()
        except (anyio.BrokenResourceError, OSError):
            pass

    async def wait(self) -> int:
        return await self.process.wait()

    async def communicate(self, data: bytes | None) -> WorkerOutput:
        """Send ``data`` once, drain stdout and stderr concurrently, then await exit."""

        self._started = True
        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        async with anyio.create_task_group() as tg:
            tg.start_soon(_drain, self.process.stdout, stdout_chunks.append)
            tg.start_soon(_drain, self.process.stderr, stderr_chunks.append)
            if data is not None:
                await self.write_input(data)
        returncode = await self.process.wait()
        LOGGER.debug("Worker pid=%s exited with %s", self.pid, returncode)
        return WorkerOutput(returncode, b"".join(stdout_chunks), b"".join(stderr_chunks))

    async def stream_events(self, emit: Callable[[str, str], Awaitable[None]]) -> int:
        """Report stdout lines and stderr text through ``emit`` until the worker exits.

        stdout is split on newlines so a protocol message is never delivered in
        pieces; an unterminated tail is flushed once stdout closes. stderr is
        relayed chunk by chunk.
        """

        self._started = True
        send_stream, receive_stream = anyio.create_memory_object_stream(64)
        async with anyio.create_task_group() as tg:
            tg.start_soon(_pump_lines, self.process.stdout, send_stream.clone())
            tg.start_soon(_pump_text, self.process.stderr, send_stream.clone())
            send_stream.close()
            async with receive_stream:
                async for stream_name, text in receive_stream:
                    await emit(stream_name, text)
        return await self.process.wait()

    async def terminate(self, grace: float = TERMINATE_GRACE) -> None:
        """Stop the worker if it is still alive and release its pipes."""

        with anyio.CancelScope(shield=True):
            if self.process.returncode is None:
                LOGGER.debug("Terminating worker pid=%s", self.pid)
                try:
                    self.process.terminate()
                except ProcessLookupError:
                    pass
                with anyio.move_on_after(grace):
                    await self.process.wait()
                if self.process.returncode is None:
                    LOGGER.warning("Worker pid=%s ignored SIGTERM; killing", self.pid)
                    try:
                        self.process.kill()
                    except ProcessLookupError:
                        pass
            await self.process.aclose()


Spawner = Callable[[Sequence[str], Mapping[str, str]], Awaitable[WorkerProcess]]


async def spawn_worker(command: Sequence[str], env: Mapping[str, str]) -> WorkerProcess:
    return await WorkerProcess.spawn(command, env)


async def _drain(stream: ByteReceiveStream | None, sink: Callable[[bytes], Any]) -> None:
    if stream is None:
        return
    async for chunk in stream:
        sink(chunk)


async def _pump_lines(stream: ByteReceiveStream | None, send_stream: Any) -> None:
    async with send_stream:
        if stream is None:
            return
        buffer = bytearray()
        async for chunk in stream:
            buffer.extend(chunk)
            while True:
                index = buffer.find(b"\n")
                if index < 0:
                    break
                line = bytes(buffer[:index]).rstrip(b"\r")
                del buffer[: index + 1]
                if line.strip():
                    await send_stream.send(("stdout", line.decode("utf-8", errors="replace")))
        if buffer.strip():
            await send_stream.send(("stdout", bytes(buffer).decode("utf-8", errors="replace")))


async def _pump_text(stream: ByteReceiveStream | None, send_stream: Any) -> None:
    async with send_stream:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        async for chunk in stream:
            text = decoder.decode(chunk)
            if text:
                await send_stream.send(("stderr", text))
        tail = decoder.decode(b"", final=True)
        if tail:
            await send_stream.send(("stderr", tail))
