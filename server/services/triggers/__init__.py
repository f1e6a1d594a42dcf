"""Flow triggers: the registry of active flows and event firing."""

from .filters import (
    FILTER_BUILDERS,
    build_filter,
    build_keyword_filter,
    build_message_filter,
    build_tag_filter,
)
from .registry import TriggerRegistration, TriggerRegistry
from .firing import TriggerFiring, matches_registration

__all__ = [
    "FILTER_BUILDERS",
    "build_filter",
    "build_keyword_filter",
    "build_message_filter",
    "build_tag_filter",
    "TriggerRegistration",
    "TriggerRegistry",
    "TriggerFiring",
    "matches_registration",
]
