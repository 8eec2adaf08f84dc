"""Split a raw model completion into prose and command messages."""

from enum import Enum

from .commands import parse_command, recognizes
from .messages import Message

FENCE_MARKERS = ("```", '"""')


def is_fence(line: str) -> bool:
    return line.strip() in FENCE_MARKERS


class SegmenterState(Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"


class Segmenter:
    """Line-driven state machine.

    IDLE: no prose is pending. ACCUMULATING: prose lines are buffered and
    will be flushed as one Model message when a command line arrives or the
    completion ends. Bare fence lines are dropped in both states, which
    also covers the fence that usually closes a fenced command.
    """

    def __init__(self):
        self.state = SegmenterState.IDLE
        self.buffer: list[str] = []
        self.messages: list[Message] = []

    def feed(self, line: str) -> None:
        if recognizes(line):
            self._flush()
            self.messages.append(Message.invocation(parse_command(line)))
            return
        if is_fence(line):
            return
        self.buffer.append(line)
        self.state = SegmenterState.ACCUMULATING

    def finish(self) -> list[Message]:
        self._flush()
        return self.messages

    def _flush(self) -> None:
        if self.state is SegmenterState.ACCUMULATING:
            text = "\n".join(self.buffer).strip()
            if text:
                self.messages.append(Message.model(text))
        self.buffer.clear()
        self.state = SegmenterState.IDLE


def segment_completion(completion: str) -> list[Message]:
    """Turn one completion into ordered Model / CommandInvocation messages.

    A completion without any command line is kept verbatim (trimmed) as a
    single Model message, fences included, so fenced snippets in a final
    answer survive. Raises MalformedCommand if a command line does not parse.
    """
    lines = completion.splitlines()
    if not any(recognizes(line) for line in lines):
        text = completion.strip()
        return [Message.model(text)] if text else []

    segmenter = Segmenter()
    for line in lines:
        segmenter.feed(line)
    return segmenter.finish()
