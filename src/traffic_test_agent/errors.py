"""Error taxonomy shared by the backends, dispatcher and CLI."""


class AgentError(Exception):
    """Base class for every error raised by traffic-test-agent."""


class SessionFormatError(AgentError):
    """A session file could not be recognised or parsed."""


class MissingCredentialsError(AgentError):
    """The selected backend needs a credential and none was supplied."""


class GenerationCancelled(AgentError):
    """The shared cancellation token fired."""


class BackendError(AgentError):
    """A backend call failed.

    ``retryable`` tells the dispatcher whether another attempt may succeed.
    ``fatal`` errors abort the whole dispatch instead of a single job.
    """

    retryable = False
    fatal = False


class BackendAuthError(BackendError):
    """The backend rejected the credential. Aborts the session."""

    fatal = True


class ThroughputLimitError(BackendError):
    """The backend throttled us (HTTP 429 or equivalent)."""

    retryable = True


class TransientServiceError(BackendError):
    """Service unavailable, connection reset or request timeout."""

    retryable = True


class MalformedInputError(BackendError):
    """The backend refused the per-endpoint request itself."""
