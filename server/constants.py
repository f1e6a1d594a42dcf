"""Centralized constants for node types, trigger types and operators.

Single source of truth for the string enums shared by the validator,
the dispatcher, trigger firing and the API layer.
"""

from typing import Dict, FrozenSet

# =============================================================================
# NODE TYPES
# =============================================================================

TRIGGER_NODE = 'trigger'
WAIT_NODE = 'wait'
SEND_MESSAGE_NODE = 'send_message'
CONDITION_NODE = 'condition'
ADD_TAG_NODE = 'add_tag'
REMOVE_TAG_NODE = 'remove_tag'
UPDATE_FIELD_NODE = 'update_field'
HTTP_REQUEST_NODE = 'http_request'
AI_CHATBOT_NODE = 'ai_chatbot'
BRANCH_NODE = 'branch'
JOIN_NODE = 'join'
END_NODE = 'end'

# Nodes that only steer control flow
CONTROL_NODE_TYPES: FrozenSet[str] = frozenset([
    TRIGGER_NODE,
    WAIT_NODE,
    CONDITION_NODE,
    BRANCH_NODE,
    JOIN_NODE,
    END_NODE,
])

# Reserved for future extension, executed as pass-through
PLACEHOLDER_NODE_TYPES: FrozenSet[str] = frozenset([
    AI_CHATBOT_NODE,
    BRANCH_NODE,
    JOIN_NODE,
])

# Nodes with external side effects; these run under a step key
SIDE_EFFECT_NODE_TYPES: FrozenSet[str] = frozenset([
    SEND_MESSAGE_NODE,
    ADD_TAG_NODE,
    REMOVE_TAG_NODE,
    UPDATE_FIELD_NODE,
    HTTP_REQUEST_NODE,
])

NODE_TYPES: FrozenSet[str] = CONTROL_NODE_TYPES | PLACEHOLDER_NODE_TYPES | SIDE_EFFECT_NODE_TYPES

# =============================================================================
# TRIGGER TYPES
# =============================================================================

TRIGGER_MESSAGE_RECEIVED = 'message_received'
TRIGGER_MESSAGE_SENT = 'message_sent'
TRIGGER_CONTACT_CREATED = 'contact_created'
TRIGGER_CONTACT_UPDATED = 'contact_updated'
TRIGGER_TAG_ADDED = 'tag_added'
TRIGGER_TAG_REMOVED = 'tag_removed'
TRIGGER_CAMPAIGN_COMPLETED = 'campaign_completed'
TRIGGER_KEYWORD_MATCH = 'keyword_match'
TRIGGER_TIME_BASED = 'time_based'
TRIGGER_WEBHOOK = 'webhook'
TRIGGER_MANUAL = 'manual'

TRIGGER_TYPES: FrozenSet[str] = frozenset([
    TRIGGER_MESSAGE_RECEIVED,
    TRIGGER_MESSAGE_SENT,
    TRIGGER_CONTACT_CREATED,
    TRIGGER_CONTACT_UPDATED,
    TRIGGER_TAG_ADDED,
    TRIGGER_TAG_REMOVED,
    TRIGGER_CAMPAIGN_COMPLETED,
    TRIGGER_KEYWORD_MATCH,
    TRIGGER_TIME_BASED,
    TRIGGER_WEBHOOK,
    TRIGGER_MANUAL,
])

KEYWORD_MATCH_TYPES: FrozenSet[str] = frozenset(['exact', 'starts_with', 'ends_with', 'contains'])

# =============================================================================
# NODE CONFIGURATION VALUES
# =============================================================================

MESSAGE_TYPES: FrozenSet[str] = frozenset(['text', 'image', 'video', 'audio', 'document'])

HTTP_METHODS: FrozenSet[str] = frozenset(['GET', 'POST', 'PUT', 'PATCH', 'DELETE'])

CUSTOM_FIELD_PREFIX = 'custom_'

# Direct contact columns an update_field node may write
CONTACT_UPDATABLE_FIELDS: FrozenSet[str] = frozenset(['phone', 'first_name', 'last_name', 'email'])

# Milliseconds per wait unit; unknown units fall back to seconds
WAIT_UNIT_MS: Dict[str, int] = {
    'seconds': 1000,
    'minutes': 60 * 1000,
    'hours': 60 * 60 * 1000,
    'days': 24 * 60 * 60 * 1000,
}
DEFAULT_WAIT_UNIT = 'seconds'

TEST_MESSAGE_ID = 'test-message-id'

# =============================================================================
# CONDITION OPERATORS
# =============================================================================

NUMERIC_OPERATORS: FrozenSet[str] = frozenset([
    'greater_than',
    'less_than',
    'greater_than_or_equal',
    'less_than_or_equal',
])

STRING_OPERATORS: FrozenSet[str] = frozenset([
    'contains',
    'not_contains',
    'starts_with',
    'ends_with',
])

EQUALITY_OPERATORS: FrozenSet[str] = frozenset(['equals', 'not_equals'])

EMPTINESS_OPERATORS: FrozenSet[str] = frozenset(['is_empty', 'is_not_empty'])

CONDITION_OPERATORS: FrozenSet[str] = (
    NUMERIC_OPERATORS |
    STRING_OPERATORS |
    EQUALITY_OPERATORS |
    EMPTINESS_OPERATORS
)

CONDITION_LOGIC = frozenset(['AND', 'OR'])

# =============================================================================
# QUEUE EVENTS
# =============================================================================

QUEUE_EVENT_COMPLETED = 'completed'
QUEUE_EVENT_FAILED = 'failed'
QUEUE_EVENT_STALLED = 'stalled'

QUEUE_EVENTS: FrozenSet[str] = frozenset([
    QUEUE_EVENT_COMPLETED,
    QUEUE_EVENT_FAILED,
    QUEUE_EVENT_STALLED,
])
