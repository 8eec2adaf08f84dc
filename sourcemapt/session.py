"""Public library API for sourcemapt: Session class and Result dataclass."""

import copy
from dataclasses import dataclass

from .messages import Message
from .report import ReportCollector
from .sourcegraph import DEFAULT_ENDPOINT, SourcegraphClient


@dataclass
class Result:
    """Result of a session run."""

    answer: str | None
    exhausted: bool
    messages: list[Message]
    report: dict | None


class Session:
    """Programmatic interface to the sourcemapt agent loop.

    Settings are resolved once here and passed explicitly to the loop, so
    the loop itself never reads the environment. *complete* and
    *sourcegraph* replace the model endpoint and the code backend, which
    is how tests run the loop without a network.
    """

    def __init__(
        self,
        *,
        provider: str = "openai",
        model: str = "gpt-4",
        api_key: str | None = None,
        base_url: str | None = None,
        sourcegraph_url: str = DEFAULT_ENDPOINT,
        sourcegraph_token: str | None = None,
        repo: str = "github.com/kubernetes/kubernetes",
        revision: str = "master",
        max_turns: int = 30,
        max_output_tokens: int = 512,
        temperature: float | None = None,
        top_p: float | None = 0.1,
        system_prompt: str | None = None,
        verbose: bool = False,
        complete=None,
        sourcegraph=None,
    ):
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.sourcegraph_url = sourcegraph_url
        self.sourcegraph_token = sourcegraph_token
        self.repo = repo
        self.revision = revision
        self.max_turns = max_turns
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.system_prompt = system_prompt
        self.verbose = verbose

        self._complete = complete
        self._sourcegraph = sourcegraph
        self._system_content: str | None = None
        self._setup_done = False

        # Transcript of the current or last run, kept for inspection after errors.
        self.messages: list[Message] = []

    def _setup(self) -> None:
        """Resolve secrets, collaborators and the system prompt once."""
        if self._setup_done:
            return

        from .agent import DEFAULT_SYSTEM_PROMPT_FILE, make_completer
        from .config import resolve_api_key, resolve_sourcegraph_token

        if self._complete is None:
            self._complete = make_completer(
                model=self.model,
                provider=self.provider,
                api_key=resolve_api_key(self.provider, self.api_key),
                base_url=self.base_url,
                max_output_tokens=self.max_output_tokens,
                temperature=self.temperature,
                top_p=self.top_p,
                verbose=self.verbose,
            )
        if self._sourcegraph is None:
            self._sourcegraph = SourcegraphClient(
                token=resolve_sourcegraph_token(self.sourcegraph_token),
                endpoint=self.sourcegraph_url,
            )

        if self.system_prompt is not None:
            self._system_content = self.system_prompt
        else:
            self._system_content = DEFAULT_SYSTEM_PROMPT_FILE.read_text(
                encoding="utf-8"
            ).strip()

        self._setup_done = True

    def settings(self) -> dict:
        return {
            "max_turns": self.max_turns,
            "max_output_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }

    def run(self, question: str, *, report: ReportCollector | None = None) -> Result:
        """Answer one question with a fresh transcript."""
        from .agent import run_agent_loop

        self.messages = []
        self._setup()
        self.messages.append(Message.system(self._system_content))
        self.messages.append(Message.user(question))

        answer, exhausted = run_agent_loop(
            self.messages,
            complete=self._complete,
            client=self._sourcegraph,
            repo=self.repo,
            revision=self.revision,
            max_turns=self.max_turns,
            verbose=self.verbose,
            report=report,
        )

        report_dict = None
        if report:
            report_dict = report.build_report(
                task=question,
                model=self.model,
                provider=self.provider,
                repo=self.repo,
                revision=self.revision,
                settings=self.settings(),
                outcome="exhausted" if exhausted else "success",
                answer=answer,
                exit_code=2 if exhausted else 0,
                turns=report.max_turn_seen,
            )

        return Result(
            answer=answer,
            exhausted=exhausted,
            messages=copy.deepcopy(self.messages),
            report=report_dict,
        )
