"""Contact node handlers - add/remove tags and field updates."""

from constants import CONTACT_UPDATABLE_FIELDS, CUSTOM_FIELD_PREFIX
from core.logging import get_logger
from models.nodes import TagNodeConfig, UpdateFieldNodeConfig
from services.execution.errors import FlowValidationError
from services.execution.models import NodeContext, NodeResult
from services.execution.protocols import ContactDirectory
from services.execution.templates import render_value

logger = get_logger(__name__)


async def handle_add_tag(node_id: str, node_type: str, config: TagNodeConfig,
                         context: NodeContext, contacts: ContactDirectory) -> NodeResult:
    for tag_name in config.tags:
        await contacts.add_tag(context.contact_id, tag_name, context.flow.team_id)

    logger.debug("Add tag node executed", node_id=node_id, tags=config.tags)
    return NodeResult()


async def handle_remove_tag(node_id: str, node_type: str, config: TagNodeConfig,
                            context: NodeContext, contacts: ContactDirectory) -> NodeResult:
    for tag_name in config.tags:
        await contacts.remove_tag(context.contact_id, tag_name, context.flow.team_id)

    logger.debug("Remove tag node executed", node_id=node_id, tags=config.tags)
    return NodeResult()


async def handle_update_field(node_id: str, node_type: str, config: UpdateFieldNodeConfig,
                              context: NodeContext, contacts: ContactDirectory) -> NodeResult:
    """Write a rendered value to a contact field.

    ``custom_<name>`` targets the custom field ``<name>``; anything else is a
    direct contact field.

    Raises:
        FlowValidationError: the target is not a writable contact field; not retried.
    """
    if not config.field.startswith(CUSTOM_FIELD_PREFIX) and config.field not in CONTACT_UPDATABLE_FIELDS:
        raise FlowValidationError([f"Update field node {node_id} cannot write field {config.field}"])

    value = render_value(config.value, context.variables, context.contact)

    if config.field.startswith(CUSTOM_FIELD_PREFIX):
        name = config.field[len(CUSTOM_FIELD_PREFIX):]
        await contacts.update_custom_field(context.contact_id, name, value)
    else:
        await contacts.update_field(context.contact_id, config.field, value)

    logger.debug("Update field node executed", node_id=node_id, field=config.field, value=value)
    return NodeResult()
