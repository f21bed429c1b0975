"""Exception taxonomy for the conversation engine.

Input errors (:class:`InvalidRequestError`, :class:`NotFoundError`,
:class:`TurnInProgressError`) are raised before any streaming starts
and carry an HTTP-equivalent status code for the boundary.  Everything
else is delivered to a sink's ``on_error`` callback and never escapes
the completion loop or run handler.
"""


class DecktutorError(Exception):
    """Base class for all engine errors."""

    status_code: int = 500


class InvalidRequestError(DecktutorError):
    """The inbound request is malformed or missing an identifier."""

    status_code = 400


class NotFoundError(DecktutorError):
    """A referenced turn, conversation or assistant does not exist."""

    status_code = 404


class ProviderStreamError(DecktutorError):
    """The provider call or its stream failed mid-flight."""


class RunFailedError(ProviderStreamError):
    """The provider reported that a stateful run failed."""

    def __init__(self, message: str = "Unknown error", run_id: str | None = None):
        super().__init__(message)
        self.run_id = run_id


class MaxStepsReachedError(DecktutorError):
    """The completion loop ran out of steps with tool calls still pending.

    Signals runaway tool use, not a transport problem.
    """

    def __init__(self, max_steps: int):
        super().__init__("Maximum steps reached")
        self.max_steps = max_steps


class ToolError(DecktutorError):
    """Base for per-call tool failures.  Never fatal to a turn."""


class UnknownFunctionError(ToolError, LookupError):
    def __init__(self, name: str):
        super().__init__(f"Unknown function: {name}")
        self.name = name


class ToolArgumentsError(ToolError, ValueError):
    """Tool-call arguments were not a JSON object."""


class TurnInProgressError(DecktutorError):
    """A response to the same user turn is still streaming."""

    status_code = 409

    def __init__(self, turn_id: str):
        super().__init__(f"A response to turn {turn_id} is already in progress")
        self.turn_id = turn_id
