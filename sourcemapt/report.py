"""Error types and JSON report generation for a sourcemapt run."""

import json
from datetime import datetime, timezone


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (bad TOML, missing token, etc.)."""


class CollaboratorError(AgentError):
    """Raised when the model endpoint or the code-search backend fails."""


class MalformedCommand(AgentError):
    """Raised when a command line cannot be parsed into a command."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"malformed command {name!r}: {reason}")
        self.name = name
        self.reason = reason


class ReportCollector:
    """Accumulates events during an agent run for JSON report output."""

    def __init__(self):
        self.events: list[dict] = []
        self.command_stats: dict[str, int] = {}
        self.llm_calls = 0
        self.total_llm_time = 0.0
        self.total_command_time = 0.0
        self.protocol_warnings = 0
        self.hidden_messages = 0
        self.introspections = 0
        self.max_turn_seen = 0

    def _see_turn(self, turn: int) -> None:
        if turn > self.max_turn_seen:
            self.max_turn_seen = turn

    def record_llm_call(self, turn: int, duration: float, token_est: int):
        self.llm_calls += 1
        self.total_llm_time += duration
        self._see_turn(turn)
        self.events.append(
            {
                "turn": turn,
                "type": "llm_call",
                "duration_s": round(duration, 3),
                "prompt_tokens_est": token_est,
            }
        )

    def record_command(
        self,
        turn: int,
        name: str,
        arguments: list[str],
        duration: float,
        result_length: int,
    ):
        self.total_command_time += duration
        self.command_stats[name] = self.command_stats.get(name, 0) + 1
        self.events.append(
            {
                "turn": turn,
                "type": "command",
                "name": name,
                "arguments": arguments,
                "duration_s": round(duration, 3),
                "result_length": result_length,
            }
        )

    def record_outcome(self, turn: int, outcome: str):
        if outcome == "introspect":
            self.introspections += 1
        self.events.append({"turn": turn, "type": "outcome", "outcome": outcome})

    def record_compaction(self, turn: int, hidden: int):
        self.hidden_messages += hidden
        self.events.append({"turn": turn, "type": "compaction", "hidden": hidden})

    def record_protocol_warning(self, turn: int, detail: str):
        self.protocol_warnings += 1
        self.events.append(
            {"turn": turn, "type": "protocol_warning", "detail": detail}
        )

    def build_report(
        self,
        *,
        task: str,
        model: str,
        provider: str,
        repo: str,
        revision: str,
        settings: dict,
        outcome: str,
        answer: str | None,
        exit_code: int,
        turns: int,
        error_message: str | None = None,
    ) -> dict:
        result: dict = {
            "outcome": outcome,
            "answer": answer,
            "exit_code": exit_code,
        }
        if error_message is not None:
            result["error_message"] = error_message

        return {
            "version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "task": task,
            "model": model,
            "provider": provider,
            "repo": repo,
            "revision": revision,
            "settings": settings,
            "result": result,
            "stats": {
                "turns": turns,
                "llm_calls": self.llm_calls,
                "commands_total": sum(self.command_stats.values()),
                "commands_by_name": dict(self.command_stats),
                "protocol_warnings": self.protocol_warnings,
                "hidden_messages": self.hidden_messages,
                "introspections": self.introspections,
                "total_llm_time_s": round(self.total_llm_time, 3),
                "total_command_time_s": round(self.total_command_time, 3),
            },
            "timeline": self.events,
        }

    def write(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self._last_report, f, indent=2)
            f.write("\n")

    def finalize(self, **kwargs) -> dict:
        """Build the report and keep it for a later write()."""
        self._last_report = self.build_report(**kwargs)
        return self._last_report
