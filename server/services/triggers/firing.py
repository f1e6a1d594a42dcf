"""Trigger firing - turn domain events into flow executions."""

from typing import Any, Dict, List, Optional

from constants import (
    TRIGGER_CAMPAIGN_COMPLETED,
    TRIGGER_CONTACT_CREATED,
    TRIGGER_CONTACT_UPDATED,
    TRIGGER_MESSAGE_RECEIVED,
    TRIGGER_MESSAGE_SENT,
    TRIGGER_TAG_ADDED,
    TRIGGER_TAG_REMOVED,
)
from core.logging import get_logger
from services.execution.executor import FlowExecutor
from services.execution.models import Execution
from .registry import TriggerRegistration, TriggerRegistry

logger = get_logger(__name__)


def matches_registration(registration: TriggerRegistration, event_data: Dict[str, Any]) -> bool:
    """Tenant check first, then the trigger type's own filter."""
    team_id = event_data.get("teamId")
    if team_id and team_id != registration.team_id:
        return False
    return registration.matches(event_data)


class TriggerFiring:
    """Starts an execution for every registered flow an event matches."""

    def __init__(self, registry: TriggerRegistry, executor: FlowExecutor):
        self.registry = registry
        self.executor = executor

    async def fire(self, trigger_type: str, event_data: Dict[str, Any]) -> List[Execution]:
        """Start matching flows for one event.

        A flow that fails to start is logged and skipped; the others still
        start.

        Returns:
            Executions started, in registration order
        """
        registrations = self.registry.get(trigger_type)
        if not registrations:
            logger.debug("No flows registered for trigger type", trigger_type=trigger_type)
            return []

        logger.info("Firing trigger", trigger_type=trigger_type, flow_count=len(registrations))

        executions = []
        for registration in registrations:
            if not matches_registration(registration, event_data):
                continue

            try:
                execution = await self.executor.start(
                    registration.flow_id,
                    event_data.get("contactId"),
                    event_data,
                    conversation_id=event_data.get("conversationId"),
                )
            except Exception as e:
                logger.error("Error starting flow from trigger",
                            flow_id=registration.flow_id,
                            trigger_type=trigger_type,
                            error=str(e))
                continue

            logger.info("Flow execution started from trigger",
                       flow_id=registration.flow_id,
                       execution_id=execution.id,
                       trigger_type=trigger_type)
            executions.append(execution)

        return executions

    # =========================================================================
    # EVENT HELPERS
    # =========================================================================

    async def on_message_received(self, message: Dict[str, Any], contact: Dict[str, Any],
                                  conversation: Dict[str, Any]) -> List[Execution]:
        return await self.fire(TRIGGER_MESSAGE_RECEIVED, _message_event(message, contact, conversation))

    async def on_message_sent(self, message: Dict[str, Any], contact: Dict[str, Any],
                              conversation: Dict[str, Any]) -> List[Execution]:
        return await self.fire(TRIGGER_MESSAGE_SENT, _message_event(message, contact, conversation))

    async def on_contact_created(self, contact: Dict[str, Any]) -> List[Execution]:
        return await self.fire(TRIGGER_CONTACT_CREATED, {
            "teamId": contact.get("team_id"),
            "contactId": contact.get("id"),
            "source": contact.get("source"),
        })

    async def on_contact_updated(self, contact: Dict[str, Any],
                                 changes: Optional[Dict[str, Any]] = None) -> List[Execution]:
        return await self.fire(TRIGGER_CONTACT_UPDATED, {
            "teamId": contact.get("team_id"),
            "contactId": contact.get("id"),
            "changes": changes or {},
        })

    async def on_tag_added(self, contact: Dict[str, Any], tag_name: str) -> List[Execution]:
        return await self.fire(TRIGGER_TAG_ADDED, _tag_event(contact, tag_name))

    async def on_tag_removed(self, contact: Dict[str, Any], tag_name: str) -> List[Execution]:
        return await self.fire(TRIGGER_TAG_REMOVED, _tag_event(contact, tag_name))

    async def on_campaign_completed(self, campaign: Dict[str, Any]) -> List[Execution]:
        """Campaign events carry no contact, so flows cannot start for them
        until a contact is supplied; each failure is logged per flow."""
        return await self.fire(TRIGGER_CAMPAIGN_COMPLETED, {
            "teamId": campaign.get("team_id"),
            "campaignId": campaign.get("id"),
            "campaignName": campaign.get("name"),
        })


def _message_event(message: Dict[str, Any], contact: Dict[str, Any],
                   conversation: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "teamId": contact.get("team_id"),
        "contactId": contact.get("id"),
        "conversationId": conversation.get("id"),
        "accountId": conversation.get("account_id"),
        "message": message.get("content"),
        "messageType": message.get("type") or message.get("message_type"),
        "messageId": message.get("id"),
    }


def _tag_event(contact: Dict[str, Any], tag_name: str) -> Dict[str, Any]:
    return {
        "teamId": contact.get("team_id"),
        "contactId": contact.get("id"),
        "tagName": tag_name,
    }
