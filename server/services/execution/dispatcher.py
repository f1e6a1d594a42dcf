"""Node Dispatcher - single node execution with handler dispatch.

Uses a registry pattern for clean handler dispatch without if-else chains.
"""

import time
from functools import partial
from typing import Callable, Dict, TYPE_CHECKING

from constants import (
    NODE_TYPES,
    PLACEHOLDER_NODE_TYPES,
    SIDE_EFFECT_NODE_TYPES,
)
from core.logging import get_logger, log_execution_time
from models.flows import Node
from services.handlers import (
    handle_trigger, handle_wait, handle_passthrough, handle_end,
    handle_condition,
    handle_send_message,
    handle_add_tag, handle_remove_tag, handle_update_field,
    handle_http_request,
)
from .errors import FlowEngineError, HandlerError, UnknownNodeType
from .models import NodeContext, NodeResult
from .protocols import ContactDirectory, MessageSender

if TYPE_CHECKING:
    from core.config import Settings
    from .cache import StepResultCache

logger = get_logger(__name__)


class NodeDispatcher:
    """Executes individual flow nodes using registry-based dispatch.

    Side-effecting nodes are deduplicated by step key: a result recorded for
    the current step is returned without calling the handler again.
    """

    def __init__(
        self,
        messaging: MessageSender,
        contacts: ContactDirectory,
        step_cache: "StepResultCache",
        settings: "Settings",
    ):
        self.messaging = messaging
        self.contacts = contacts
        self.step_cache = step_cache
        self.settings = settings
        self._handlers = self._build_handler_registry()

        missing = NODE_TYPES - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler registered for node types: {sorted(missing)}")

    def _build_handler_registry(self) -> Dict[str, Callable]:
        """Build handler registry with service dependencies bound via partial."""
        registry = {
            # Control
            'trigger': handle_trigger,
            'wait': handle_wait,
            'condition': handle_condition,
            'end': handle_end,
            # Messaging
            'send_message': partial(handle_send_message, messaging=self.messaging),
            # Contacts
            'add_tag': partial(handle_add_tag, contacts=self.contacts),
            'remove_tag': partial(handle_remove_tag, contacts=self.contacts),
            'update_field': partial(handle_update_field, contacts=self.contacts),
            # HTTP
            'http_request': partial(handle_http_request,
                                    default_timeout=self.settings.http_request_timeout),
        }

        # Reserved node kinds continue along the first edge
        for node_type in PLACEHOLDER_NODE_TYPES:
            registry[node_type] = handle_passthrough

        return registry

    @property
    def node_types(self):
        return set(self._handlers)

    async def dispatch(self, node: Node, context: NodeContext) -> NodeResult:
        """Run the handler for ``node``.

        Raises:
            UnknownNodeType: no handler for the node's type.
            HandlerError: the handler failed; retryable.
        """
        handler = self._handlers.get(node.type)
        if handler is None:
            raise UnknownNodeType(node.type, node.id)

        step_key = context.step_key(node.id)
        side_effect = node.type in SIDE_EFFECT_NODE_TYPES

        if side_effect:
            recorded = await self.step_cache.get(step_key)
            if recorded is not None:
                logger.info("Step already executed, reusing recorded result",
                           node_id=node.id, node_type=node.type, step_key=step_key)
                return NodeResult.from_dict(recorded)

        start_time = time.time()
        try:
            result = await handler(node.id, node.type, node.config, context)
        except FlowEngineError:
            raise
        except Exception as e:
            logger.error("Node handler failed", node_id=node.id, node_type=node.type, error=str(e))
            raise HandlerError(node.id, node.type, str(e) or type(e).__name__) from e

        log_execution_time(logger, "node_dispatch", start_time, time.time(),
                           node_id=node.id, node_type=node.type)

        if side_effect:
            await self.step_cache.record(step_key, result.to_dict())

        return result
