"""Flow definition validation.

Runs at save and activation time and reports every problem at once, so
that the engine only ever loads graphs it can execute.
"""

from collections import defaultdict, deque
from typing import Any, Dict, List, Set

from pydantic import ValidationError

from constants import (
    CONDITION_OPERATORS,
    CONTACT_UPDATABLE_FIELDS,
    CUSTOM_FIELD_PREFIX,
    HTTP_METHODS,
    MESSAGE_TYPES,
    NODE_TYPES,
    TRIGGER_NODE,
    TRIGGER_TYPES,
)
from core.logging import get_logger
from models.flows import Edge, Flow, Node
from .errors import FlowValidationError

logger = get_logger(__name__)


def _format_validation_error(prefix: str, error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{prefix} {location}: {item.get('msg')}" if location else f"{prefix}: {item.get('msg')}")
    return messages


def _validate_node_config(node: Node) -> List[str]:
    """Per-kind required configuration."""
    config = node.config
    errors = []

    if node.type == "wait":
        if not config.duration or config.duration <= 0:
            errors.append(f"Wait node {node.id} duration must be a positive number")

    elif node.type == "send_message":
        if not config.message:
            errors.append(f"Send message node {node.id} must have a message")
        if config.message_type not in MESSAGE_TYPES:
            errors.append(f"Send message node {node.id} has invalid messageType: {config.message_type}")

    elif node.type == "condition":
        if "conditions" not in config.model_fields_set:
            errors.append(f"Condition node {node.id} must have a conditions list")
        for index, rule in enumerate(config.conditions):
            if not rule.field:
                errors.append(f"Condition {index} in node {node.id} must have a field")
            if rule.operator not in CONDITION_OPERATORS:
                errors.append(f"Condition {index} in node {node.id} has invalid operator: {rule.operator}")

    elif node.type in ("add_tag", "remove_tag"):
        if not config.tags:
            errors.append(f"{node.type} node {node.id} must have a non-empty tags list")

    elif node.type == "update_field":
        if not config.field:
            errors.append(f"Update field node {node.id} must have a field")
        elif config.field.startswith(CUSTOM_FIELD_PREFIX):
            if not config.field[len(CUSTOM_FIELD_PREFIX):]:
                errors.append(f"Update field node {node.id} must name a custom field after {CUSTOM_FIELD_PREFIX}")
        elif config.field not in CONTACT_UPDATABLE_FIELDS:
            errors.append(
                f"Update field node {node.id} cannot write field {config.field}; use one of "
                f"{', '.join(sorted(CONTACT_UPDATABLE_FIELDS))} or a {CUSTOM_FIELD_PREFIX}<name> field"
            )
        if "value" not in config.model_fields_set:
            errors.append(f"Update field node {node.id} must have a value")

    elif node.type == "http_request":
        if not config.url:
            errors.append(f"HTTP request node {node.id} must have a url")
        if config.method not in HTTP_METHODS:
            errors.append(
                f"HTTP request node {node.id} must have a valid method ({', '.join(sorted(HTTP_METHODS))})"
            )

    return errors


def find_cycle_nodes(node_ids: List[str], edges: List[Edge]) -> Set[str]:
    """Nodes left over after Kahn's topological sort, i.e. on or behind a cycle."""
    in_degree: Dict[str, int] = {node_id: 0 for node_id in node_ids}
    successors: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        if edge.source not in in_degree or edge.target not in in_degree:
            continue
        successors[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    ready = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
    sorted_count = 0
    while ready:
        node_id = ready.popleft()
        sorted_count += 1
        for successor in successors[node_id]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                ready.append(successor)

    if sorted_count == len(in_degree):
        return set()
    return {node_id for node_id, degree in in_degree.items() if degree > 0}


def find_unreachable_nodes(start_id: str, node_ids: List[str], edges: List[Edge]) -> List[str]:
    """BFS from ``start_id``; returns nodes never visited, in authoring order."""
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.source].append(edge.target)

    visited = {start_id}
    queue = deque([start_id])
    while queue:
        for target in adjacency[queue.popleft()]:
            if target not in visited:
                visited.add(target)
                queue.append(target)

    return [node_id for node_id in node_ids if node_id not in visited]


def validate_flow(data: Dict[str, Any]) -> Flow:
    """Normalize a raw flow definition and validate it.

    Args:
        data: Flow fields; ``nodes`` and ``edges`` in their raw JSON shape
            (node configuration under ``config`` or ``data``)

    Returns:
        The typed Flow

    Raises:
        FlowValidationError: carrying every problem found
    """
    errors: List[str] = []

    name = data.get("name")
    if not name or not isinstance(name, str) or not name.strip():
        errors.append("Flow name is required")

    trigger_type = data.get("trigger_type")
    if trigger_type not in TRIGGER_TYPES:
        errors.append(f"Invalid trigger type. Must be one of: {', '.join(sorted(TRIGGER_TYPES))}")

    raw_nodes = data.get("nodes")
    raw_edges = data.get("edges") or []
    if not isinstance(raw_nodes, list) or not raw_nodes:
        errors.append("Flow must have at least one node")
        raw_nodes = []
    if not isinstance(raw_edges, list):
        errors.append("Flow edges must be a list")
        raw_edges = []

    # Nodes
    nodes: List[Node] = []
    # Every declared id, including nodes rejected below; graph checks run over these
    graph_ids: List[str] = []
    seen_ids: Set[str] = set()
    for index, raw in enumerate(raw_nodes):
        node_id = raw.get("id") if isinstance(raw, dict) else None
        if not node_id:
            errors.append(f"Node at index {index} is missing an id")
            continue
        if node_id in seen_ids:
            errors.append(f"Duplicate node id: {node_id}")
            continue
        seen_ids.add(node_id)
        graph_ids.append(node_id)

        node_type = raw.get("type")
        if node_type not in NODE_TYPES:
            errors.append(f"Node {node_id} has invalid type: {node_type}")
            continue

        try:
            node = Node.model_validate(raw)
        except ValidationError as e:
            errors.extend(_format_validation_error(f"Node {node_id}", e))
            continue

        errors.extend(_validate_node_config(node))
        nodes.append(node)

    # Edges
    edges: List[Edge] = []
    for index, raw in enumerate(raw_edges):
        try:
            edge = Edge.model_validate(raw)
        except ValidationError as e:
            errors.extend(_format_validation_error(f"Edge at index {index}", e))
            continue

        label = edge.id or index
        if edge.source not in seen_ids:
            errors.append(f"Edge {label} references non-existent source node: {edge.source}")
        elif edge.target not in seen_ids:
            errors.append(f"Edge {label} references non-existent target node: {edge.target}")
        else:
            edges.append(edge)

    # Graph shape
    triggers = [node for node in nodes if node.type == TRIGGER_NODE]
    if len(triggers) != 1:
        errors.append(f"Flow must have exactly one trigger node, found {len(triggers)}")

    cycle_nodes = find_cycle_nodes(graph_ids, edges)
    if cycle_nodes:
        errors.append(f"Cycle detected involving nodes: {', '.join(sorted(cycle_nodes))}")

    if len(triggers) == 1:
        for node_id in find_unreachable_nodes(triggers[0].id, graph_ids, edges):
            errors.append(f"Node {node_id} is not reachable from the trigger node")

    if errors:
        logger.info("Flow validation failed", flow_id=data.get("id"), error_count=len(errors))
        raise FlowValidationError(errors)

    flow_fields = {key: value for key, value in data.items() if key not in ("nodes", "edges")}
    try:
        return Flow(**flow_fields, nodes=nodes, edges=edges)
    except ValidationError as e:
        raise FlowValidationError(_format_validation_error("Flow", e)) from e
