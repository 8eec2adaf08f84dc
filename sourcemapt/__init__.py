"""sourcemapt: answer source-code questions with a language model and Sourcegraph."""

from .report import AgentError, CollaboratorError, ConfigError, MalformedCommand
from .session import Result, Session

__all__ = [
    "AgentError",
    "CollaboratorError",
    "ConfigError",
    "MalformedCommand",
    "Result",
    "Session",
]
