"""Execute model commands against the code backend and classify each round."""

import time
from dataclasses import dataclass, field

from . import fmt
from .commands import Command, Jump, ReadLines, SearchFiles, describe
from .messages import CodeBlock, Message, MessageKind
from .report import ReportCollector
from .sourcegraph import build_search_query

MAX_PREVIEW = 500


@dataclass
class CallWithCommandResults:
    """At least one command produced output; send it back to the model."""

    results: list[Message] = field(default_factory=list)
    label = "Call with command results"


@dataclass
class Stop:
    """The model gave its concluding answer."""

    label = "Stop"


@dataclass
class CallForIntrospect:
    """Prose only and no conclusion; ask the model whether it can summarize."""

    label = "Introspect"


Outcome = CallWithCommandResults | Stop | CallForIntrospect


def split_lines(text: str) -> list[str]:
    """Split on newlines only, without a phantom line after a final newline."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line.removesuffix("\r") for line in lines]


def _slice_block(content: str, start: int, n: int) -> CodeBlock:
    return CodeBlock(lines=split_lines(content)[start : start + n], start=start)


def run_command(
    command: Command,
    client,
    *,
    repo: str,
    revision: str,
    verbose: bool = False,
) -> Message:
    """Execute one command and wrap its output as a transcript message.

    *client* provides ``search_files``, ``get_file_content`` and
    ``get_definition``. Its CollaboratorError propagates unchanged.
    """
    if isinstance(command, SearchFiles):
        if verbose:
            fmt.info(f"Query: {build_search_query(repo, command.keywords)}")
        found = client.search_files(repo, list(command.keywords))
        return Message.result(found.to_json())

    if isinstance(command, ReadLines):
        content = client.get_file_content(repo, revision, command.file)
        return Message.code(_slice_block(content, command.start, command.n))

    if isinstance(command, Jump):
        found = client.get_definition(
            repo, revision, command.file, command.line, command.char
        )
        if found is None or not found.definitions:
            return Message.user(
                f"Couldn't find definition for `{command.file}` "
                f"at line {command.line}, character {command.char}"
            )
        # Index 0 wins when several definition sites are returned.
        site = found.definitions[0]
        content = client.get_file_content(
            site.resource.repo, site.resource.revision, site.resource.path
        )
        return Message.code(_slice_block(content, site.range.line_start, command.n))

    raise TypeError(f"not a command: {command!r}")


def resolve_round(
    messages: list[Message],
    client,
    *,
    repo: str,
    revision: str,
    verbose: bool = False,
    report: ReportCollector | None = None,
    turn: int = 0,
) -> Outcome:
    """Run every command in *messages* in order, then classify the round.

    Priority: any command output -> CallWithCommandResults; otherwise a
    concluding last Model message -> Stop; otherwise CallForIntrospect.
    """
    results: list[Message] = []

    for message in messages:
        if message.kind is MessageKind.MODEL:
            continue
        if message.kind is not MessageKind.COMMAND_INVOCATION:
            detail = message.render()
            fmt.protocol_warning(detail)
            if report:
                report.record_protocol_warning(turn, detail)
            continue

        command = message.payload
        if verbose:
            fmt.command_call(describe(command))
        t0 = time.monotonic()
        try:
            result = run_command(
                command, client, repo=repo, revision=revision, verbose=verbose
            )
        except Exception as e:
            if verbose:
                fmt.command_error(command.name, str(e))
            raise
        elapsed = time.monotonic() - t0

        if verbose:
            fmt.command_result(command.name, elapsed, result.content[:MAX_PREVIEW])
        if report:
            report.record_command(
                turn,
                command.name,
                command.arguments(),
                elapsed,
                len(result.content),
            )
        results.append(result)

    if results:
        return CallWithCommandResults(results)
    if messages and messages[-1].is_summary():
        return Stop()
    return CallForIntrospect()
