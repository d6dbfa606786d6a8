"""
Error taxonomy for workflow execution.

Handlers raise these; the dispatcher turns them into a failed node result so
that a single node failure never aborts a run.
"""


class NodeflowError(Exception):
    """Base class for every error the engine knows how to contain."""


class ValidationError(NodeflowError):
    """Malformed or missing node configuration, e.g. an HTTP node without a URL."""


class ConfigurationError(NodeflowError):
    """Service credentials or settings are missing."""


class RemoteCallError(NodeflowError):
    """An external collaborator answered with a failure or could not be reached."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class SandboxExecutionError(NodeflowError):
    """User-supplied code raised, failed to compile or ran out of time."""


class UnknownTypeError(NodeflowError):
    """The node type or its category has no registered handler."""


class GraphIntegrityError(NodeflowError):
    """A workflow definition or edit would break structural integrity."""


class WorkflowNotFoundError(NodeflowError):
    """No workflow with the requested id is registered."""


class WorkflowBusyError(NodeflowError):
    """The workflow is being executed and cannot be edited right now."""
