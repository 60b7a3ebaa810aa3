"""
On-the-fly transcoding for mpdsonic.

Songs are streamed to clients as Opus in an Ogg container, encoded by an
ffmpeg child process at a bitrate picked from a fixed ladder. ReplayGain is
applied during encoding, so the gain tags are stripped from the output.

Pipeline:
    library stream --(feeder task)--> ffmpeg stdin
    ffmpeg stdout  --(TranscodeStream)--> HTTP response

The feeder copies the source into the encoder and reaps the child once the
source is exhausted; its failures are only logged, and the client sees the
stream end. Closing the TranscodeStream (end of stream, client disconnect,
or the response being dropped unsent) cancels the feeder and kills the child.
"""

from __future__ import annotations

import asyncio
import bisect
import contextlib
import logging
from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

# Buffer size for streaming (64KB chunks)
STREAM_BUFFER_SIZE = 65536

# Allowed target bitrates in kbit/s, ascending
BITRATES: tuple[int, ...] = (96, 112, 128, 160, 192)

OUTPUT_CONTENT_TYPE = "audio/ogg"

# How long to wait for SIGKILL to take effect
KILL_TIMEOUT_SECONDS = 1.0

# How long the stream waits for the feeder to reap the child after EOF
FEEDER_GRACE_SECONDS = 5.0

AUDIO_FILTER = (
    "volume=replaygain=track:replaygain_preamp=6dB:replaygain_noclip=0, "
    "alimiter=level=disabled, "
    "asidedata=mode=delete:type=REPLAYGAIN"
)

STRIPPED_METADATA = (
    "replaygain_album_gain",
    "replaygain_album_peak",
    "replaygain_track_gain",
    "replaygain_track_peak",
    "r128_album_gain",
    "r128_track_gain",
)


def select_bitrate(max_bitrate: int | None) -> int:
    """
    Pick the target bitrate for a requested maximum.

    The greatest ladder entry not above ``max_bitrate`` wins. No maximum, 0 or
    anything above the top of the ladder selects the top; anything below the
    bottom selects the bottom.
    """
    if not max_bitrate or max_bitrate >= BITRATES[-1]:
        return BITRATES[-1]
    index = bisect.bisect_right(BITRATES, max_bitrate)
    return BITRATES[max(index - 1, 0)]


def build_ffmpeg_args(bitrate: int) -> list[str]:
    """
    Build the encoder arguments (without the binary) for a ladder bitrate.

    Args:
        bitrate: Target bitrate in kbit/s.
    """
    args = [
        "-v", "0",
        "-i", "-",
        "-map", "0:a:0",
        "-vn",
        "-b:a", str(bitrate * 1024),
        "-c:a", "libopus",
        "-vbr", "on",
        "-af", AUDIO_FILTER,
    ]  # fmt: skip
    for tag in STRIPPED_METADATA:
        args += ["-metadata", f"{tag}="]
    args += ["-f", "opus", "-"]
    return args


async def stop_process(
    process: asyncio.subprocess.Process,
    timeout: float = KILL_TIMEOUT_SECONDS,
) -> None:
    """
    Kill an encoder child (if still running) and reap it.

    The encoded output of a dropped stream is worthless, so there is no
    graceful SIGTERM phase.

    Args:
        process: The encoder process.
        timeout: Seconds to wait for the child to be reaped.
    """
    if process.stdin is not None:
        with contextlib.suppress(OSError, RuntimeError, ValueError):
            process.stdin.close()

    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError, OSError):
            process.kill()

    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except TimeoutError:
        logger.warning("Encoder PID %s did not exit after SIGKILL", process.pid)


async def _feed(
    source: AsyncIterator[bytes],
    process: asyncio.subprocess.Process,
    label: str,
) -> None:
    """Copy the source into the encoder, then close its input and reap it."""
    stdin = process.stdin
    assert stdin is not None

    async with contextlib.aclosing(source):
        try:
            async for chunk in source:
                stdin.write(chunk)
                await stdin.drain()
        except Exception as e:
            logger.warning("Copying %s into the encoder failed: %s", label, e)

    with contextlib.suppress(OSError, RuntimeError):
        stdin.close()
        await stdin.wait_closed()

    try:
        returncode = await process.wait()
    except Exception as e:
        logger.warning("Waiting for the encoder of %s failed: %s", label, e)
        return
    if returncode != 0:
        logger.warning("Encoder for %s exited with code %d", label, returncode)


class TranscodeStream:
    """
    Encoded output of one running encoder, as an async iterator of chunks.

    The encoder and its feeder are already running when the stream is
    created. :meth:`aclose` stops both whether or not iteration ever
    started, and is called automatically at end of stream or when iteration
    fails or is cancelled. A stream garbage-collected without being closed
    still kills its child.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        source: AsyncIterator[bytes],
        label: str = "",
    ) -> None:
        self.process = process
        self.label = label
        self.bytes_sent = 0
        # Nothing to clean up until the feeder exists
        self._closed = True
        self._feeder = asyncio.create_task(_feed(source, process, label))
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> TranscodeStream:
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration

        stdout = self.process.stdout
        assert stdout is not None
        try:
            chunk = await stdout.read(STREAM_BUFFER_SIZE)
        except BaseException:
            await self.aclose()
            raise

        if not chunk:
            await asyncio.wait({self._feeder}, timeout=FEEDER_GRACE_SECONDS)
            logger.debug("Transcode complete: %s, sent %d bytes", self.label, self.bytes_sent)
            await self.aclose()
            raise StopAsyncIteration

        self.bytes_sent += len(chunk)
        return chunk

    def _kill(self) -> None:
        """Cancel the feeder and kill the child without awaiting anything."""
        if not self._feeder.done():
            self._feeder.cancel()
        if self.process.returncode is None:
            with contextlib.suppress(ProcessLookupError, OSError):
                self.process.kill()

    async def aclose(self) -> None:
        """Stop the feeder and the encoder; safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        # Kill first; the awaits below may be interrupted by cancellation
        self._kill()
        await asyncio.gather(self._feeder, return_exceptions=True)
        await stop_process(self.process)

    def __del__(self) -> None:
        if self._closed:
            return
        # Event loop may already be gone
        with contextlib.suppress(RuntimeError):
            self._kill()


async def transcode_stream(
    source: AsyncIterator[bytes],
    bitrate: int,
    ffmpeg: str = "ffmpeg",
    label: str = "",
) -> TranscodeStream:
    """
    Start transcoding ``source`` and return the encoded stream.

    The encoder is spawned before this returns, so a missing binary is
    reported to the caller rather than in the middle of a response.

    Args:
        source: Raw song bytes; closed once consumed or on failure.
        bitrate: Target bitrate in kbit/s (see :func:`select_bitrate`).
        ffmpeg: Encoder binary.
        label: Name of the song, for logging.

    Raises:
        OSError: The encoder could not be started.
    """
    args = build_ffmpeg_args(bitrate)
    logger.debug("Starting encoder for %s at %d kbit/s", label, bitrate)
    try:
        process = await asyncio.create_subprocess_exec(
            ffmpeg,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except BaseException:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()
        raise

    return TranscodeStream(process, source, label)
