"""Node handlers package.

This package contains all node execution handlers organized by category:
- control.py: Trigger, Wait, End and the pass-through placeholders
- logic.py: Condition
- messaging.py: Send Message
- contacts.py: Add Tag, Remove Tag, Update Field
- http.py: HTTP Request

Every handler has the signature
``handler(node_id, node_type, config, context, **deps) -> NodeResult``;
dependencies are bound by the dispatcher with functools.partial.
"""

# Control handlers
from .control import (
    handle_trigger,
    handle_wait,
    handle_passthrough,
    handle_end,
    wait_delay_ms,
)

# Logic handlers
from .logic import (
    handle_condition,
)

# Messaging handlers
from .messaging import (
    handle_send_message,
    resolve_account_id,
)

# Contact handlers
from .contacts import (
    handle_add_tag,
    handle_remove_tag,
    handle_update_field,
)

# HTTP handlers
from .http import (
    handle_http_request,
)

__all__ = [
    # Control
    'handle_trigger',
    'handle_wait',
    'handle_passthrough',
    'handle_end',
    'wait_delay_ms',
    # Logic
    'handle_condition',
    # Messaging
    'handle_send_message',
    'resolve_account_id',
    # Contacts
    'handle_add_tag',
    'handle_remove_tag',
    'handle_update_field',
    # HTTP
    'handle_http_request',
]
