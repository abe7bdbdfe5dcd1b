"""Decoder for the line-framed ``data: <json>`` streaming format."""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

logger = logging.getLogger(__name__)

FRAME_MARKER = "data:"
DONE_SENTINEL = "[DONE]"


class FrameDecoder:
    """Turn arbitrarily split text fragments into decoded JSON frames.

    Text that is not yet newline-terminated is carried over to the next
    ``feed`` call, so the decoded frames do not depend on where the network
    split the body. Once the ``[DONE]`` sentinel is seen the decoder is
    exhausted and ignores further input.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.done = False
        self.skipped_frames = 0

    def feed(self, fragment: str) -> list[dict[str, Any]]:
        """Consume a fragment and return the frames it completed."""
        if self.done or not fragment:
            return []

        self._buffer += fragment
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        return self._decode_lines(lines)

    def flush(self) -> list[dict[str, Any]]:
        """Decode whatever is left in the buffer at end of stream."""
        if self.done or not self._buffer:
            return []

        remainder, self._buffer = self._buffer, ""
        return self._decode_lines([remainder])

    def _decode_lines(self, lines: list[str]) -> list[dict[str, Any]]:
        frames = []
        for line in lines:
            line = line.strip()
            if not line.startswith(FRAME_MARKER):
                continue

            payload = line[len(FRAME_MARKER):].strip()
            if payload == DONE_SENTINEL:
                self.done = True
                self._buffer = ""
                break

            frame = self._parse(payload)
            if frame is not None:
                frames.append(frame)

        return frames

    def _parse(self, payload: str) -> dict[str, Any] | None:
        try:
            frame = json.loads(payload)
        except ValueError:
            self.skipped_frames += 1
            logger.warning(f"Failed to parse streaming frame: {payload[:200]}")
            return None

        if not isinstance(frame, dict):
            self.skipped_frames += 1
            logger.warning(f"Ignoring non-object streaming frame: {payload[:200]}")
            return None

        return frame


async def iter_frames(
    fragments: AsyncIterator[str], decoder: FrameDecoder | None = None
) -> AsyncIterator[dict[str, Any]]:
    """Decode frames from an async stream of text fragments.

    Stops at the ``[DONE]`` sentinel without pulling further fragments.
    """
    decoder = decoder or FrameDecoder()

    async for fragment in fragments:
        for frame in decoder.feed(fragment):
            yield frame
        if decoder.done:
            return

    for frame in decoder.flush():
        yield frame
