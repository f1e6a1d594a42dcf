"""Event filters per trigger type.

Each builder takes a registration's match configuration and returns a
predicate over event data. Filters are built once, at registration time.
"""

from typing import Any, Callable, Dict

from constants import (
    TRIGGER_KEYWORD_MATCH,
    TRIGGER_MESSAGE_RECEIVED,
    TRIGGER_TAG_ADDED,
    TRIGGER_TAG_REMOVED,
)

EventFilter = Callable[[Dict[str, Any]], bool]

KEYWORD_MATCHERS: Dict[str, Callable[[str, str], bool]] = {
    'exact': lambda message, keyword: message == keyword,
    'starts_with': lambda message, keyword: message.startswith(keyword),
    'ends_with': lambda message, keyword: message.endswith(keyword),
    'contains': lambda message, keyword: keyword in message,
}


def build_keyword_filter(config: Dict[str, Any]) -> EventFilter:
    """Case-insensitive keyword match on the event's ``message``.

    ``matchType`` is one of exact, starts_with, ends_with or contains
    (default). An empty keyword list matches every event.
    """
    keywords = [str(k).lower() for k in config.get('keywords') or []]
    compare = KEYWORD_MATCHERS.get(config.get('matchType') or 'contains', KEYWORD_MATCHERS['contains'])

    def matches(event: Dict[str, Any]) -> bool:
        if not keywords:
            return True
        message = str(event.get('message') or '').lower()
        return any(compare(message, keyword) for keyword in keywords)

    return matches


def build_tag_filter(config: Dict[str, Any]) -> EventFilter:
    """Event ``tagName`` must be one of ``tags``; an empty list matches all."""
    tags = list(config.get('tags') or [])

    def matches(event: Dict[str, Any]) -> bool:
        if not tags:
            return True
        return event.get('tagName') in tags

    return matches


def build_message_filter(config: Dict[str, Any]) -> EventFilter:
    """Optional ``messageTypes`` membership and ``accountId`` equality."""
    message_types = list(config.get('messageTypes') or [])
    account_id = config.get('accountId')

    def matches(event: Dict[str, Any]) -> bool:
        if message_types and event.get('messageType') not in message_types:
            return False
        if account_id and account_id != event.get('accountId'):
            return False
        return True

    return matches


# Registry of filter builders per trigger type
FILTER_BUILDERS: Dict[str, Callable[[Dict[str, Any]], EventFilter]] = {
    TRIGGER_KEYWORD_MATCH: build_keyword_filter,
    TRIGGER_TAG_ADDED: build_tag_filter,
    TRIGGER_TAG_REMOVED: build_tag_filter,
    TRIGGER_MESSAGE_RECEIVED: build_message_filter,
}


def build_filter(trigger_type: str, config: Dict[str, Any]) -> EventFilter:
    """Build a filter function for the given trigger type and configuration."""
    builder = FILTER_BUILDERS.get(trigger_type)
    if builder:
        return builder(config)
    # Default: accept all events
    return lambda event: True
