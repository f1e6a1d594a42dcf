"""Send message node handler."""

from constants import TEST_MESSAGE_ID
from core.logging import get_logger
from models.nodes import SendMessageNodeConfig
from services.execution.models import NodeContext, NodeResult
from services.execution.protocols import MessageSender
from services.execution.templates import render_template

logger = get_logger(__name__)


def resolve_account_id(config: SendMessageNodeConfig, context: NodeContext) -> str:
    """Sending account: node config, then the flow's trigger config, then the team."""
    return (
        config.account_id
        or context.flow.trigger_config.get("accountId")
        or context.flow.team_id
    )


async def handle_send_message(node_id: str, node_type: str, config: SendMessageNodeConfig,
                              context: NodeContext, messaging: MessageSender) -> NodeResult:
    """Render the message and hand it to the messaging service.

    Test-mode executions skip the send and report a stub message id.
    """
    content = render_template(config.message, context.variables, context.contact)
    media_url = render_template(config.media_url, context.variables, context.contact)

    if context.execution.test_mode or context.variables.get("testMode"):
        logger.debug("Send message node executed (test mode)", node_id=node_id, message=content)
        return NodeResult(variables={"lastMessageId": TEST_MESSAGE_ID})

    message = await messaging.send(
        account_id=resolve_account_id(config, context),
        contact_id=context.contact_id,
        message_type=config.message_type,
        content=content,
        media_url=media_url,
        idempotency_key=context.step_key(node_id),
    )

    logger.debug("Send message node executed", node_id=node_id, message_id=message.get("id"))
    return NodeResult(variables={"lastMessageId": message.get("id")})
