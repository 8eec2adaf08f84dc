import argparse
import contextlib
import sys
import time
from importlib import metadata
from pathlib import Path

import tiktoken

from . import fmt
from .config import (
    PROVIDERS,
    _UNSET,
    apply_config_to_args,
    generate_config,
    load_config,
)
from .dispatch import CallWithCommandResults, Stop, resolve_round
from .messages import InjectedMessage, Message, MessageKind, to_chat_messages
from .report import AgentError, CollaboratorError, ReportCollector
from .segmenter import segment_completion

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"
LMSTUDIO_BASE_URL = "http://127.0.0.1:1234"

_encoder = tiktoken.get_encoding("cl100k_base")


def estimate_tokens(messages: list[dict]) -> int:
    """Count tokens across role/content dicts using tiktoken."""
    total = 0
    for m in messages:
        total += len(_encoder.encode(m.get("content", "") or ""))
    # Per-message overhead (role, separators), ~4 tokens each
    total += 4 * len(messages)
    return total


def compact_history(messages: list[Message], verbose: bool = False) -> int:
    """Hide ask-to-summarize prompts the model has already moved past.

    A visible AskToSummarize message is hidden when the message right after
    it exists and is not a concluding answer. Returns the number hidden.
    """
    hidden = 0
    for i, message in enumerate(messages):
        if not message.visible or message.kind is not MessageKind.INJECTED:
            continue
        if message.payload is not InjectedMessage.ASK_TO_SUMMARIZE:
            continue
        if i + 1 < len(messages) and not messages[i + 1].is_summary():
            message.hide()
            hidden += 1
            if verbose:
                fmt.hidden("AskToSummarize")
    return hidden


def _model_string(provider: str, model: str, base_url: str | None) -> tuple[str, dict]:
    """Map a provider/model pair to a LiteLLM model string and call kwargs."""
    if provider == "openai":
        kwargs = {"api_base": base_url} if base_url else {}
        return f"openai/{model.removeprefix('openai/')}", kwargs
    if provider == "openrouter":
        # Only strip a doubled LiteLLM prefix; "openrouter/free" is a real model id.
        bare_id = (
            model[len("openrouter/") :]
            if model.startswith("openrouter/openrouter/")
            else model
        )
        kwargs = {"api_base": base_url} if base_url else {}
        return f"openrouter/{bare_id}", kwargs
    if provider == "lmstudio":
        return f"openai/{model}", {
            "api_base": f"{base_url or LMSTUDIO_BASE_URL}/v1",
            "api_key": "lm-studio",
        }
    raise AgentError(f"unknown provider {provider!r}")


def call_llm(
    messages: list[dict],
    *,
    model: str,
    provider: str = "openai",
    api_key: str | None = None,
    base_url: str | None = None,
    max_output_tokens: int = 512,
    temperature: float | None = None,
    top_p: float | None = None,
    verbose: bool = False,
) -> str:
    """Call LiteLLM and return the first choice's trimmed text."""
    import litellm

    litellm.suppress_debug_info = True

    model_str, kwargs = _model_string(provider, model, base_url)
    if api_key and "api_key" not in kwargs:
        kwargs["api_key"] = api_key

    if verbose:
        extras = []
        if temperature is not None:
            extras.append(f"temperature={temperature}")
        if top_p is not None:
            extras.append(f"top_p={top_p}")
        extra_str = ", " + ", ".join(extras) if extras else ""
        fmt.model_info(
            f"Calling model {model_str} with max_tokens={max_output_tokens}{extra_str}"
        )

    completion_kwargs = dict(
        model=model_str,
        messages=messages,
        max_tokens=max_output_tokens,
        **kwargs,
    )
    for key, val in [("temperature", temperature), ("top_p", top_p)]:
        if val is not None:
            completion_kwargs[key] = val

    try:
        response = litellm.completion(**completion_kwargs)
    except Exception as e:
        raise CollaboratorError(f"LLM call failed: {e}")

    if not response.choices:
        raise CollaboratorError("LLM call failed: response has no choices")
    return (response.choices[0].message.content or "").strip()


def make_completer(**llm_kwargs):
    """Bind model settings, returning ``complete(chat_messages) -> str``."""

    def complete(messages: list[dict]) -> str:
        return call_llm(messages, **llm_kwargs)

    return complete


def run_agent_loop(
    messages: list[Message],
    *,
    complete,
    client,
    repo: str,
    revision: str,
    max_turns: int,
    verbose: bool,
    report: ReportCollector | None = None,
) -> tuple[str | None, bool]:
    """Drive model rounds until the model concludes or max_turns is hit.

    Mutates `messages` in place: only appends and hide-flag flips.
    *complete* maps role/content dicts to the model's raw text; *client*
    is the code backend used by dispatch. Returns (final_answer, exhausted).
    """
    pending: list[Message] = []
    turns = 0

    while turns < max_turns:
        turns += 1
        messages.extend(pending)
        chat = to_chat_messages(messages)
        token_est = estimate_tokens(chat)
        if verbose:
            fmt.turn_header(turns, max_turns, token_est)

        t0 = time.monotonic()
        with _spinner(verbose):
            text = complete(chat)
        elapsed = time.monotonic() - t0
        new = segment_completion(text)
        messages.extend(new)
        if verbose:
            fmt.llm_timing(elapsed, len(new))
        if report:
            report.record_llm_call(turns, elapsed, token_est)

        if verbose:
            for message in new:
                if message.kind is MessageKind.MODEL:
                    fmt.model_text(message.payload)

        hidden = compact_history(messages, verbose)
        if hidden and report:
            report.record_compaction(turns, hidden)

        outcome = resolve_round(
            new,
            client,
            repo=repo,
            revision=revision,
            verbose=verbose,
            report=report,
            turn=turns,
        )
        if verbose:
            fmt.outcome(outcome.label)

        if isinstance(outcome, Stop):
            if report:
                report.record_outcome(turns, "stop")
            if verbose:
                fmt.completion(turns, "ok")
            return new[-1].payload, False
        if isinstance(outcome, CallWithCommandResults):
            if report:
                report.record_outcome(turns, "command_results")
            pending = outcome.results
        else:
            if report:
                report.record_outcome(turns, "introspect")
            pending = [Message.injected(InjectedMessage.ASK_TO_SUMMARIZE)]

    # max_turns exhausted; command results of the last round are kept too
    messages.extend(pending)
    if verbose:
        fmt.completion(turns, "max_turns")
    for m in reversed(messages):
        if m.kind is MessageKind.MODEL:
            return m.payload, True
    return None, True


def _spinner(verbose: bool):
    return fmt.llm_spinner() if verbose else contextlib.nullcontext()


def build_parser():
    """Build and return the argument parser.

    Options default to _UNSET so config files can fill what the CLI left out.
    """
    parser = argparse.ArgumentParser(
        prog="sourcemapt",
        usage="%(prog)s [options] <question>",
        description="Answer source-code questions by letting a language model search and read a Sourcegraph-indexed repository.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "question", nargs="?", default=None, help="The question about the repository."
    )
    parser.add_argument(
        "--repo",
        default=_UNSET,
        help="Repository to search, as named by Sourcegraph (default: github.com/kubernetes/kubernetes).",
    )
    parser.add_argument(
        "--revision",
        default=_UNSET,
        help="Branch, tag or commit to read files at (default: master).",
    )
    parser.add_argument(
        "--provider",
        choices=list(PROVIDERS),
        default=_UNSET,
        help="LLM provider: openai, openrouter, lmstudio (local).",
    )
    parser.add_argument(
        "--model",
        default=_UNSET,
        help="Model identifier (default: gpt-4).",
    )
    parser.add_argument(
        "--api-key",
        default=_UNSET,
        help="API key for the provider (overrides env var).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Provider base URL override.",
    )
    parser.add_argument(
        "--sourcegraph-url",
        default=_UNSET,
        help="Sourcegraph GraphQL endpoint (default: https://sourcegraph.com/.api/graphql).",
    )
    parser.add_argument(
        "--sourcegraph-token",
        default=_UNSET,
        help="Sourcegraph access token (overrides SOURCEGRAPH_API_TOKEN).",
    )
    parser.add_argument(
        "--max-output-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens per completion (default: 512).",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: provider default).",
    )
    parser.add_argument(
        "--top-p",
        type=float,
        default=_UNSET,
        help="Top-p (nucleus) sampling (default: 0.1).",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=_UNSET,
        help="Maximum model rounds (default: 30).",
    )
    parser.add_argument(
        "--system-prompt",
        default=_UNSET,
        help="Replace the built-in system prompt.",
    )
    parser.add_argument(
        "--transcript",
        action="store_true",
        default=_UNSET,
        help="Print the full transcript, hidden messages included, when done.",
    )
    parser.add_argument(
        "--report",
        default=None,
        metavar="FILE",
        help="Write a JSON report of the run to FILE.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress all diagnostics; only print the final answer.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )

    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented configuration template and exit.",
    )
    parser.add_argument(
        "--project",
        action="store_true",
        help="With --init-config, print the project (sourcemapt.toml) variant.",
    )
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("sourcemapt")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config(project=args.project))
        sys.exit(0)

    try:
        config = load_config(Path.cwd())
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    apply_config_to_args(args, config)

    if args.question is None:
        parser.error("question is required")

    args.verbose = not args.quiet
    fmt.init(color=args.color, no_color=args.no_color)

    from .session import Session

    report = ReportCollector() if args.report else None
    session = Session(
        provider=args.provider,
        model=args.model,
        api_key=args.api_key,
        base_url=args.base_url,
        sourcegraph_url=args.sourcegraph_url,
        sourcegraph_token=args.sourcegraph_token,
        repo=args.repo,
        revision=args.revision,
        max_turns=args.max_turns,
        max_output_tokens=args.max_output_tokens,
        temperature=args.temperature,
        top_p=args.top_p,
        system_prompt=args.system_prompt,
        verbose=args.verbose,
    )

    def _write_report(outcome, answer=None, exit_code=0, error_message=None):
        if not report:
            return
        report.finalize(
            task=args.question,
            model=args.model,
            provider=args.provider,
            repo=args.repo,
            revision=args.revision,
            settings=session.settings(),
            outcome=outcome,
            answer=answer,
            exit_code=exit_code,
            turns=report.max_turn_seen,
            error_message=error_message,
        )
        try:
            report.write(args.report)
        except OSError as e:
            fmt.error(f"Failed to write report to {args.report}: {e}")
            return
        if args.verbose:
            fmt.info(f"Report written to {args.report}")

    try:
        result = session.run(args.question, report=report)
    except AgentError as e:
        fmt.error(str(e))
        fmt.transcript(session.messages)
        _write_report("error", exit_code=1, error_message=str(e))
        sys.exit(1)

    if args.transcript:
        fmt.transcript(result.messages)
    if result.answer is not None:
        print(result.answer)
    _write_report(
        "exhausted" if result.exhausted else "success",
        answer=result.answer,
        exit_code=2 if result.exhausted else 0,
    )
    if result.exhausted:
        fmt.warning("max turns reached, agent stopped.")
        sys.exit(2)
