"""Exception hierarchy shared by the codec, the variable store and the engine."""

from typing import Any


class GvFlowError(Exception):
    """Base exception for all service errors."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidArgument(GvFlowError):
    """Malformed input to an identifier or store operation."""

    pass


class UnparseableIdentifier(GvFlowError):
    """String matches none of the supported identifier grammars."""

    def __init__(self, identifier: str):
        super().__init__(f"Unparseable variable identifier: {identifier!r}")
        self.identifier = identifier


class NotFound(GvFlowError):
    """Variable or entity lookup miss."""

    pass


class Forbidden(GvFlowError):
    """Mutation attempted on a variable not owned by the user."""

    pass


class Conflict(GvFlowError):
    """Write would violate a uniqueness constraint."""

    pass


class MaxDepthExceeded(GvFlowError):
    """Variable references still remain after the maximum number of resolution passes."""

    def __init__(self, max_depth: int, remaining: str):
        super().__init__(
            f"Variable references still unresolved after {max_depth} passes "
            "(circular reference?)"
        )
        self.max_depth = max_depth
        self.remaining = remaining


class WorkflowExecutionError(GvFlowError):
    """Base exception for errors raised while running a workflow."""

    def __init__(self, message: str, node_id: str | None = None, **details: Any):
        super().__init__(message, **details)
        self.node_id = node_id


class MissingStartNode(WorkflowExecutionError):
    """Workflow graph has no start node or more than one."""

    pass


class WorkTaskExecutionFailed(WorkflowExecutionError):
    """External work task collaborator reported failure."""

    pass


class UnsupportedNodeType(WorkflowExecutionError):
    """No executor is registered for a node type."""

    pass


class InvalidNodeConfig(WorkflowExecutionError):
    """Node config is missing a required parameter."""

    pass


class ExecutionCanceled(WorkflowExecutionError):
    """Execution was canceled through its cancellation token."""

    pass


class DispatchLimitExceeded(WorkflowExecutionError):
    """Execution dispatched more nodes than the configured ceiling."""

    pass


class ChatAdapterError(GvFlowError):
    """AI chat collaborator failed."""

    def __init__(self, message: str, service: str | None = None, retriable: bool = False):
        super().__init__(message)
        self.service = service
        self.retriable = retriable
