"""Transcript entries exchanged between the loop, the model and the backend."""

from dataclasses import dataclass, field
from enum import Enum

from .commands import Command, describe, serialize

SUMMARY_MARKER = "IN SUMMARY:"

ASK_TO_SUMMARIZE_PROMPT = """\
Are you able to confidently answer my initial question in detail now?
If so, say `IN SUMMARY:`, followed by your answer, with any relevant source code snippets.
Otherwise, continue to use SEARCH_FILES, READ_LINES, and JUMP."""


@dataclass
class CodeBlock:
    """A run of source lines starting at zero-based offset *start*."""

    lines: list[str] = field(default_factory=list)
    start: int = 0

    def format(self) -> str:
        """Prefix each line with its 1-based number, right-aligned per block."""
        width = len(str(self.start + len(self.lines)))
        return "\n".join(
            f"{i:>{width}} | {line}"
            for i, line in enumerate(self.lines, start=self.start + 1)
        )


class InjectedMessage(Enum):
    """Canned steering prompts. Text is looked up when rendered."""

    ASK_TO_SUMMARIZE = "ask_to_summarize"

    @property
    def prompt(self) -> str:
        return _INJECTED_PROMPTS[self]


_INJECTED_PROMPTS = {
    InjectedMessage.ASK_TO_SUMMARIZE: ASK_TO_SUMMARIZE_PROMPT,
}


class MessageKind(Enum):
    SYSTEM = "System"
    USER = "User"
    CODE = "Code"
    INJECTED = "UserInjected"
    MODEL = "ModelMessage"
    COMMAND_INVOCATION = "CommandInvocation"
    COMMAND_RESULT = "CommandResult"


_ROLES = {
    MessageKind.SYSTEM: "system",
    MessageKind.USER: "user",
    MessageKind.CODE: "user",
    MessageKind.INJECTED: "user",
    MessageKind.MODEL: "assistant",
    MessageKind.COMMAND_INVOCATION: "assistant",
    MessageKind.COMMAND_RESULT: "user",
}


@dataclass
class Message:
    """One transcript entry.

    *payload* depends on *kind*: a str for System, User, Model and
    CommandResult; a CodeBlock for Code; an InjectedMessage for Injected;
    a Command for CommandInvocation. Messages are never removed from a
    transcript, only hidden.
    """

    kind: MessageKind
    payload: object
    visible: bool = True

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(MessageKind.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(MessageKind.USER, content)

    @classmethod
    def code(cls, block: CodeBlock) -> "Message":
        return cls(MessageKind.CODE, block)

    @classmethod
    def injected(cls, kind: InjectedMessage) -> "Message":
        return cls(MessageKind.INJECTED, kind)

    @classmethod
    def model(cls, content: str) -> "Message":
        return cls(MessageKind.MODEL, content)

    @classmethod
    def invocation(cls, command: Command) -> "Message":
        return cls(MessageKind.COMMAND_INVOCATION, command)

    @classmethod
    def result(cls, content: str) -> "Message":
        return cls(MessageKind.COMMAND_RESULT, content)

    @property
    def role(self) -> str:
        return _ROLES[self.kind]

    @property
    def content(self) -> str:
        """The text the model sees for this message."""
        if self.kind is MessageKind.CODE:
            return self.payload.format()
        if self.kind is MessageKind.INJECTED:
            return self.payload.prompt
        if self.kind is MessageKind.COMMAND_INVOCATION:
            return serialize(self.payload)
        return self.payload

    def is_summary(self) -> bool:
        """True for a Model message carrying the concluding-answer marker."""
        return self.kind is MessageKind.MODEL and SUMMARY_MARKER in self.payload

    def hide(self) -> None:
        self.visible = False

    def to_chat_message(self) -> dict:
        return {"role": self.role, "content": self.content}

    def render(self) -> str:
        """Transcript form: a label header followed by `| `-prefixed lines."""
        if self.kind is MessageKind.COMMAND_INVOCATION:
            body = describe(self.payload)
        else:
            body = self.content
        lines = [f"{self.kind.value} [hidden: {str(not self.visible).lower()}]"]
        lines.extend(f"| {line}" for line in body.splitlines())
        return "\n".join(lines)


def to_chat_messages(messages: list[Message]) -> list[dict]:
    """Map the visible part of a transcript to role/content dicts."""
    return [m.to_chat_message() for m in messages if m.visible]
