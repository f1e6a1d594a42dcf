"""Control node handlers - trigger, wait, end and pass-through placeholders."""

from constants import DEFAULT_WAIT_UNIT, WAIT_UNIT_MS
from core.logging import get_logger
from models.nodes import BaseNodeConfig, WaitNodeConfig
from services.execution.models import NodeContext, NodeResult

logger = get_logger(__name__)


def wait_delay_ms(duration: float, unit: str) -> int:
    """Convert a wait duration to milliseconds. Unknown units count as seconds."""
    factor = WAIT_UNIT_MS.get(unit, WAIT_UNIT_MS[DEFAULT_WAIT_UNIT])
    return int(duration * factor)


async def handle_trigger(node_id: str, node_type: str, config: BaseNodeConfig,
                         context: NodeContext) -> NodeResult:
    """Graph entry point; nothing to do."""
    logger.debug("Trigger node executed", node_id=node_id)
    return NodeResult()


async def handle_wait(node_id: str, node_type: str, config: WaitNodeConfig,
                      context: NodeContext) -> NodeResult:
    """Defer the next step by the configured duration."""
    delay_ms = wait_delay_ms(config.duration, config.unit)
    logger.debug("Wait node executed", node_id=node_id, delay_ms=delay_ms)
    return NodeResult(delay_ms=delay_ms)


async def handle_passthrough(node_id: str, node_type: str, config: BaseNodeConfig,
                             context: NodeContext) -> NodeResult:
    """ai_chatbot, branch and join: continue along the first edge."""
    logger.debug("Pass-through node executed", node_id=node_id, node_type=node_type)
    return NodeResult()


async def handle_end(node_id: str, node_type: str, config: BaseNodeConfig,
                     context: NodeContext) -> NodeResult:
    logger.debug("End node executed", node_id=node_id)
    return NodeResult(complete=True)
