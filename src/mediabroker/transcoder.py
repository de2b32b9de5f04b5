"""Sandboxed GIF optimizer invocation.

Runs gifsicle (giflossy build) inside a throwaway container that inherits the
bot container's volumes, so host-written files are visible at the sandbox
mount point. Arguments are always passed as an argv vector; no shell is
involved at any stage.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import signal
from typing import TYPE_CHECKING

from mediabroker.broker import consume_future_exception
from mediabroker.config import Settings, load_settings
from mediabroker.errors import (
    ExternalToolError,
    ToolNotInstalledError,
    ToolTimeoutError,
    ValidationError,
)
from mediabroker.media import calculate_size_reduction
from mediabroker.paths import ensure_safe_path, translator_for_host

if TYPE_CHECKING:
    from mediabroker.paths import PathTranslator

log = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
_TERMINATION_CODES = frozenset({-signal.SIGTERM, -getattr(signal, "SIGKILL", signal.SIGTERM)})


@dataclass(frozen=True, slots=True)
class TranscodeJob:
    """One optimization request.

    ``lossy`` is the compression intensity (0-100, higher is smaller and
    uglier); ``optimize`` is gifsicle's optimization level (1-3).
    """

    input_path: str | Path
    output_path: str | Path
    lossy: int = 35
    optimize: int = 3

    def validate(self) -> None:
        """Raise ``ValidationError`` when a knob is out of range."""
        if not _is_int(self.lossy) or not 0 <= self.lossy <= 100:
            raise ValidationError(
                f"lossy level must be between 0 and 100, got {self.lossy!r}"
            )
        if not _is_int(self.optimize) or not 1 <= self.optimize <= 3:
            raise ValidationError(
                f"optimize level must be between 1 and 3, got {self.optimize!r}"
            )


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class TranscodeReport:
    """What a successful run produced."""

    output_path: Path
    original_size: int
    optimized_size: int
    stdout: str = ""
    stderr: str = ""

    @property
    def reduction_percent(self) -> int:
        return calculate_size_reduction(self.original_size, self.optimized_size)


class SandboxedTranscoder:
    """Invoke the containerized optimizer for a :class:`TranscodeJob`."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        translator: PathTranslator | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.translator = translator or translator_for_host(
            self.settings.resolved_host_root(), self.settings.sandbox_root
        )

    def build_command(self, input_path: str, output_path: str, job: TranscodeJob) -> list[str]:
        """Build the argv for an already translated and checked path pair."""
        s = self.settings
        return [
            s.container_runtime,
            "run",
            "--rm",
            "--volumes-from",
            s.container_name,
            s.optimizer_image,
            s.optimizer_binary,
            f"--optimize={job.optimize}",
            f"--lossy={job.lossy}",
            input_path,
            "-o",
            output_path,
        ]

    def prepare(self, job: TranscodeJob) -> list[str]:
        """Validate *job*, create the output directory and return the argv.

        Everything that can be rejected is rejected here, before a process
        exists.
        """
        job.validate()
        input_path = Path(job.input_path)
        output_path = Path(job.output_path)
        if not input_path.exists():
            raise ValidationError(f"Input file not found: {input_path}")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        sandbox_in = ensure_safe_path(
            self.translator.to_sandbox(str(input_path.resolve())), label="input"
        )
        sandbox_out = ensure_safe_path(
            self.translator.to_sandbox(str(output_path.resolve())), label="output"
        )
        return self.build_command(sandbox_in, sandbox_out, job)

    async def run(self, job: TranscodeJob) -> TranscodeReport:
        """Optimize ``job.input_path`` into ``job.output_path``.

        Raises:
            ValidationError: Bad knobs, missing input, unsafe paths, or no
                output file after a successful exit.
            ToolNotInstalledError: The container runtime is not on PATH.
            ToolTimeoutError: The run exceeded ``timeout_s`` or was terminated.
            ExternalToolError: Any other failure (details are logged).
        """
        argv = self.prepare(job)
        output_path = Path(job.output_path)
        log.info(
            "Optimizing GIF: %s -> %s (lossy: %s, optimize: %s)",
            job.input_path,
            output_path,
            job.lossy,
            job.optimize,
        )
        log.debug("Executing: %s", " ".join(argv))

        stdout, stderr = await self._execute(argv)

        if stderr and "warning" not in stderr:
            log.warning("optimizer stderr: %s", stderr)
        if stdout:
            log.debug("optimizer stdout: %s", stdout)

        if not output_path.exists():
            log.error("Optimizer exited cleanly but %s was not created", output_path)
            raise ValidationError("Optimized GIF file was not created")

        log.info("GIF optimization completed: %s", output_path)
        return TranscodeReport(
            output_path=output_path,
            original_size=Path(job.input_path).stat().st_size,
            optimized_size=output_path.stat().st_size,
            stdout=stdout,
            stderr=stderr,
        )

    async def _execute(self, argv: list[str]) -> tuple[str, str]:
        tool = argv[0]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            log.error("GIF optimization failed: %s not found (%s)", tool, e)
            raise ToolNotInstalledError(
                f"{tool} command not found. Is {tool} installed?", tool=tool
            ) from e

        overflow: list[str] = []
        drained = asyncio.gather(
            self._drain(proc, proc.stdout, "stdout", overflow),
            self._drain(proc, proc.stderr, "stderr", overflow),
        )
        drained.add_done_callback(consume_future_exception)
        try:
            out_b, err_b = await asyncio.wait_for(drained, timeout=self.settings.timeout_s)
            returncode = await proc.wait()
        except TimeoutError:
            _kill(proc)
            await proc.wait()
            log.error("GIF optimization timed out after %ss: %s", self.settings.timeout_s, argv)
            raise ToolTimeoutError("GIF optimization timed out", tool=tool) from None
        except BaseException:
            # Cancelled or failed while the child runs: never leave it behind.
            _kill(proc)
            await asyncio.shield(proc.wait())
            log.warning("GIF optimization interrupted; killed %s (pid %s)", tool, proc.pid)
            raise

        stdout = out_b.decode("utf-8", errors="replace")
        stderr = err_b.decode("utf-8", errors="replace")

        if overflow:
            log.error(
                "GIF optimization aborted: %s exceeded %d bytes; stderr: %s",
                overflow[0],
                self.settings.max_output_bytes,
                stderr,
            )
            raise ExternalToolError("GIF optimization failed", tool=tool, returncode=returncode)
        if returncode in _TERMINATION_CODES:
            log.error("GIF optimization terminated (code %s); stderr: %s", returncode, stderr)
            raise ToolTimeoutError("GIF optimization timed out", tool=tool, returncode=returncode)
        if returncode != 0:
            log.error(
                "GIF optimization failed: %s exited with code %s; argv: %s; stderr: %s",
                tool,
                returncode,
                argv,
                stderr,
            )
            raise ExternalToolError("GIF optimization failed", tool=tool, returncode=returncode)
        return stdout, stderr

    async def _drain(
        self,
        proc: asyncio.subprocess.Process,
        stream: asyncio.StreamReader | None,
        name: str,
        overflow: list[str],
    ) -> bytes:
        """Read *stream* to EOF, keeping at most ``max_output_bytes``.

        On overflow the process is killed and the rest is discarded.
        """
        if stream is None:
            return b""
        limit = self.settings.max_output_bytes
        buf = bytearray()
        while chunk := await stream.read(_READ_CHUNK):
            if overflow or len(buf) + len(chunk) > limit:
                if not overflow:
                    overflow.append(name)
                    _kill(proc)
                continue
            buf.extend(chunk)
        return bytes(buf)


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def optimize_gif(
    input_path: str | Path,
    output_path: str | Path,
    *,
    lossy: int | None = None,
    optimize: int | None = None,
    settings: Settings | None = None,
) -> TranscodeReport:
    """Optimize a GIF using configured defaults for unset knobs."""
    transcoder = SandboxedTranscoder(settings)
    job = TranscodeJob(
        input_path=input_path,
        output_path=output_path,
        lossy=transcoder.settings.default_lossy if lossy is None else lossy,
        optimize=transcoder.settings.default_optimize if optimize is None else optimize,
    )
    return await transcoder.run(job)
