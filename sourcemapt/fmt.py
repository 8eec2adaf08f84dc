"""ANSI-formatted stderr output using Rich."""

from rich.console import Console
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Turn structure ----------------------------------------------------------


def turn_header(n: int, max_n: int, token_est: int) -> None:
    title = f"Turn {n}/{max_n} (~{token_est} tokens)"
    _console.print(Rule(title, style="cyan"))


def llm_timing(elapsed: float, produced: int) -> None:
    text = Text()
    text.append(f"  LLM responded in {elapsed:.1f}s", style="green")
    text.append(f"  messages={produced}", style="green")
    _console.print(text)


def llm_spinner(label: str = "Waiting for LLM"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {label}", spinner="dots")


def outcome(label: str) -> None:
    _console.print(Text(f"  -> Outcome: {label}", style="bold green"))


def completion(turns: int, exit_code: str) -> None:
    if exit_code == "ok":
        _console.print(
            Text(f"  \u2713 Agent finished: {turns} turns", style="bold green")
        )
    else:
        _console.print(
            Text(f"  Agent finished: {turns} turns, exit={exit_code}", style="bold red")
        )


# -- Model output and commands -------------------------------------------------


def model_text(text: str) -> None:
    line = Text()
    line.append("  [model] ", style="blue")
    line.append(text)
    _console.print(line)


def command_call(description: str) -> None:
    header = Text()
    header.append("  \u25b6 ", style="bold magenta")
    header.append(description, style="bold magenta")
    _console.print(header)


def command_result(name: str, elapsed: float, preview: str) -> None:
    header = Text()
    header.append(f"  \u2713 {name}", style="green")
    header.append(f"  {elapsed:.1f}s", style="green")
    _console.print(header)
    if preview:
        for line in preview.splitlines():
            _console.print(Text(f"    | {line}", style="dim"))


def command_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  \u2717 {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


def hidden(label: str) -> None:
    _console.print(Text(f"  Hiding {label} message", style="cyan"))


# -- Diagnostics -------------------------------------------------------------


def model_info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def protocol_warning(msg: str) -> None:
    line = Text()
    line.append("  \u26a0 Unexpected message: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def warning(msg: str) -> None:
    line = Text()
    line.append("  \u26a0 Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def transcript(messages) -> None:
    """Dump every message, hidden ones included, for inspection."""
    _console.print(Rule("Transcript", style="cyan"))
    for message in messages:
        _console.print(Text(message.render(), style="" if message.visible else "dim"))
