"""The command micro-language the model uses to ask for code.

A command is a single line of the form::

    !IDENT "arg1" "arg2" ...

optionally wrapped in one leading/trailing backtick. Arguments are the exact
text between each pair of double quotes; there is no escaping, so a literal
quote can never appear inside an argument.
"""

import re
from dataclasses import dataclass

from .report import MalformedCommand

_COMMAND_RE = re.compile(r'^`?!(\w+)(?=\s|`|$)((?:\s+"[^"]*")*)')
_ARG_RE = re.compile(r'"([^"]*)"')
_UINT_RE = re.compile(r"[0-9]+")


def _check_text(name: str, field: str, value) -> None:
    if not isinstance(value, str):
        raise ValueError(f"{name}: {field} must be a str, got {type(value).__name__}")
    if '"' in value:
        raise ValueError(f"{name}: {field} cannot contain a double quote: {value!r}")


def _check_uint(name: str, field: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name}: {field} must be a non-negative int, got {value!r}")


@dataclass(frozen=True)
class SearchFiles:
    keywords: tuple[str, ...] = ()

    name = "SEARCH_FILES"

    def __post_init__(self):
        if isinstance(self.keywords, str):
            raise ValueError(f"{self.name}: keywords must be a sequence of str, not a str")
        # Accept any sequence but keep the value hashable and comparable.
        object.__setattr__(self, "keywords", tuple(self.keywords))
        for keyword in self.keywords:
            _check_text(self.name, "keyword", keyword)

    def arguments(self) -> list[str]:
        return list(self.keywords)


@dataclass(frozen=True)
class ReadLines:
    file: str
    start: int
    n: int

    name = "READ_LINES"

    def __post_init__(self):
        _check_text(self.name, "file", self.file)
        _check_uint(self.name, "start", self.start)
        _check_uint(self.name, "n", self.n)

    def arguments(self) -> list[str]:
        return [self.file, str(self.start), str(self.n)]


@dataclass(frozen=True)
class Jump:
    file: str
    line: int
    char: int
    n: int

    name = "JUMP"

    def __post_init__(self):
        _check_text(self.name, "file", self.file)
        _check_uint(self.name, "line", self.line)
        _check_uint(self.name, "char", self.char)
        _check_uint(self.name, "n", self.n)

    def arguments(self) -> list[str]:
        return [self.file, str(self.line), str(self.char), str(self.n)]


Command = SearchFiles | ReadLines | Jump


def recognizes(line: str) -> bool:
    """Return True if *line* opens a command."""
    return _COMMAND_RE.match(line.strip()) is not None


def _uint(name: str, field: str, value: str) -> int:
    if not _UINT_RE.fullmatch(value):
        raise MalformedCommand(
            name, f"{field} must be a non-negative integer, got {value!r}"
        )
    return int(value)


def _expect_args(name: str, args: list[str], count: int) -> None:
    if len(args) != count:
        raise MalformedCommand(name, f"expected {count} arguments, got {len(args)}")


def parse_command(line: str) -> Command:
    """Parse a command line into a Command.

    Raises MalformedCommand for lines that are not commands, unknown
    identifiers, wrong argument counts, and non-numeric integer fields.
    """
    m = _COMMAND_RE.match(line.strip())
    if m is None:
        raise MalformedCommand(line.strip(), "not a command line")
    name = m.group(1)
    args = _ARG_RE.findall(m.group(2))

    if name == SearchFiles.name:
        return SearchFiles(tuple(args))
    if name == ReadLines.name:
        _expect_args(name, args, 3)
        return ReadLines(
            file=args[0],
            start=_uint(name, "start", args[1]),
            n=_uint(name, "n", args[2]),
        )
    if name == Jump.name:
        _expect_args(name, args, 4)
        return Jump(
            file=args[0],
            line=_uint(name, "line", args[1]),
            char=_uint(name, "char", args[2]),
            n=_uint(name, "n", args[3]),
        )
    raise MalformedCommand(name, f"unknown command ({len(args)} arguments)")


def serialize(command: Command) -> str:
    """Render *command* back into the micro-language (inverse of parse_command)."""
    parts = [f"!{command.name}"]
    parts.extend(f'"{arg}"' for arg in command.arguments())
    return " ".join(parts)


def describe(command: Command) -> str:
    """Human-readable one-line description for diagnostics and transcripts."""
    if isinstance(command, SearchFiles):
        query = " ".join(f'"{k}"' for k in command.keywords)
        return f"SearchFiles: query={query}"
    if isinstance(command, ReadLines):
        return f"ReadLines: file={command.file}, start={command.start}, n={command.n}"
    return (
        f"Jump: file={command.file}, line={command.line}, "
        f"char={command.char}, n={command.n}"
    )
