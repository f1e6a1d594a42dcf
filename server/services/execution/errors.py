"""Flow engine exception hierarchy.

``retryable`` tells the flow worker whether another queue attempt can help.
"""

from typing import List, Optional


class FlowEngineError(Exception):
    """Base exception for all flow engine errors."""

    retryable = False


class FlowNotFound(FlowEngineError):
    """Flow does not exist, is deleted, or belongs to another team."""

    def __init__(self, flow_id: Optional[str]):
        self.flow_id = flow_id
        super().__init__(f"Flow not found: {flow_id}")


class FlowNotActive(FlowEngineError):
    """Flow exists but is not activated."""

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Flow is not active: {flow_id}")


class ContactNotFound(FlowEngineError):
    """Contact does not exist or belongs to another team."""

    def __init__(self, contact_id: Optional[str]):
        self.contact_id = contact_id
        super().__init__(f"Contact not found: {contact_id}")


class ExecutionNotFound(FlowEngineError):
    """Execution record does not exist."""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Flow execution not found: {execution_id}")


class UnknownNodeType(FlowEngineError):
    """No handler exists for the node's type. Fatal for the execution."""

    def __init__(self, node_type: str, node_id: Optional[str] = None):
        self.node_type = node_type
        self.node_id = node_id
        super().__init__(f"Unknown node type: {node_type}")


class HandlerError(FlowEngineError):
    """A node handler's side effect failed."""

    retryable = True

    def __init__(self, node_id: str, node_type: str, message: str):
        self.node_id = node_id
        self.node_type = node_type
        super().__init__(f"[{node_type}:{node_id}] {message}")


class FlowValidationError(FlowEngineError):
    """Flow definition rejected at save or activation time."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Flow validation failed: " + "; ".join(self.errors))
