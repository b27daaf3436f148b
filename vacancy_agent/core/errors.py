"""Orchestrator error taxonomy."""


class AgentError(Exception):
    """Base class for errors raised by orchestrator phases."""


class PreconditionError(AgentError):
    """A phase's required artifact is missing."""

    def __init__(self, phase: str, artifact: str) -> None:
        self.phase = phase
        self.artifact = artifact
        super().__init__(f"{phase}: missing required artifact '{artifact}'")


class PlanConstructionError(AgentError):
    """Search preferences reference a field the search UI spec does not define."""


class AIResponseError(AgentError):
    """The AI port answered with text that is not the expected JSON object."""


class TokenBudgetExceededError(AgentError):
    """The session has spent its token budget; no further AI call is made."""

    def __init__(self, used: int, limit: int) -> None:
        self.used = used
        self.limit = limit
        super().__init__(
            f"token budget exhausted: {used} of {limit} tokens used "
            "(raise llm.token_hard_limit to continue)",
        )
