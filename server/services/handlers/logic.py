"""Condition node handler."""

from core.logging import get_logger
from models.nodes import ConditionNodeConfig
from services.execution.conditions import evaluate_conditions
from services.execution.models import NodeContext, NodeResult

logger = get_logger(__name__)


async def handle_condition(node_id: str, node_type: str, config: ConditionNodeConfig,
                           context: NodeContext) -> NodeResult:
    """Evaluate the predicates and pick the outgoing edge labeled "true" or "false".

    When no edge carries the matching label the run continues along the
    first outgoing edge.
    """
    conditions = [rule.model_dump() for rule in config.conditions]
    condition_met = evaluate_conditions(conditions, context.variables, context.contact,
                                        logic=config.operator)

    label = "true" if condition_met else "false"
    next_edge = next(
        (edge for edge in context.flow.outgoing_edges(node_id) if edge.label == label),
        None,
    )

    logger.debug("Condition node executed",
                node_id=node_id,
                condition_met=condition_met,
                next_node_id=next_edge.target if next_edge else None)

    return NodeResult(
        variables={"conditionResult": condition_met},
        next_node_id=next_edge.target if next_edge else None,
    )
