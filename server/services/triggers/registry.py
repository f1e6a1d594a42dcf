"""Trigger registry - in-memory index of active flows by trigger type.

One instance per process, built by the container and populated from the
database at startup. The Flow Service keeps it in step with activation
changes; Trigger Firing reads it for every event.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from core.logging import get_logger
from services.execution.protocols import FlowStore
from .filters import build_filter

logger = get_logger(__name__)


@dataclass
class TriggerRegistration:
    """Active flow listening for one trigger type."""
    flow_id: str
    team_id: str
    trigger_type: str
    config: Dict[str, Any] = field(default_factory=dict)
    matches: Callable[[Dict[str, Any]], bool] = field(default=lambda event: True, repr=False,
                                                      compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "team_id": self.team_id,
            "trigger_type": self.trigger_type,
            "config": self.config,
        }


class TriggerRegistry:
    """Index of registrations keyed by trigger type.

    A flow has at most one registration: registering it again, under any
    trigger type, replaces the previous entry.
    """

    def __init__(self, store: FlowStore):
        self.store = store
        self._index: Dict[str, List[TriggerRegistration]] = defaultdict(list)
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @staticmethod
    def _make_registration(flow_id: str, team_id: str, trigger_type: str,
                           config: Optional[Dict[str, Any]]) -> TriggerRegistration:
        config = dict(config or {})
        return TriggerRegistration(
            flow_id=flow_id,
            team_id=team_id,
            trigger_type=trigger_type,
            config=config,
            matches=build_filter(trigger_type, config),
        )

    @staticmethod
    def _remove_flow(index: Dict[str, List[TriggerRegistration]], flow_id: str) -> None:
        for trigger_type in list(index):
            index[trigger_type] = [r for r in index[trigger_type] if r.flow_id != flow_id]
            if not index[trigger_type]:
                del index[trigger_type]

    def register(self, flow_id: str, team_id: str, trigger_type: str,
                 config: Optional[Dict[str, Any]] = None) -> TriggerRegistration:
        """Insert or replace the registration of ``flow_id``."""
        registration = self._make_registration(flow_id, team_id, trigger_type, config)
        self._remove_flow(self._index, flow_id)
        self._index[trigger_type].append(registration)

        logger.info("Trigger registered", flow_id=flow_id, team_id=team_id, trigger_type=trigger_type)
        return registration

    def unregister(self, flow_id: str, trigger_type: Optional[str] = None) -> bool:
        """Remove the registration of ``flow_id``; all trigger types when none is given."""
        before = self.count()
        if trigger_type is None:
            self._remove_flow(self._index, flow_id)
        elif trigger_type in self._index:
            self._index[trigger_type] = [r for r in self._index[trigger_type] if r.flow_id != flow_id]
            if not self._index[trigger_type]:
                del self._index[trigger_type]

        removed = self.count() < before
        if removed:
            logger.info("Trigger unregistered", flow_id=flow_id, trigger_type=trigger_type)
        return removed

    async def initialize(self) -> int:
        """Rebuild the index from every active, non-deleted flow.

        The new index replaces the old one only once fully built, so a failed
        load leaves the previous registrations in place.

        Returns:
            Number of registrations loaded
        """
        flows = await self.store.list_active_flows()

        index: Dict[str, List[TriggerRegistration]] = defaultdict(list)
        for flow in flows:
            if flow.is_deleted or not flow.is_active:
                continue
            self._remove_flow(index, flow.id)
            index[flow.trigger_type].append(
                self._make_registration(flow.id, flow.team_id, flow.trigger_type, flow.trigger_config)
            )

        self._index = index
        self._initialized = True
        logger.info("Trigger registry initialized",
                   flow_count=self.count(),
                   trigger_types=sorted(self._index))
        return self.count()

    def get(self, trigger_type: str) -> List[TriggerRegistration]:
        """Registrations of one trigger type, in registration order."""
        return list(self._index.get(trigger_type, []))

    def all(self) -> Dict[str, List[TriggerRegistration]]:
        return {trigger_type: list(regs) for trigger_type, regs in self._index.items()}

    def count(self) -> int:
        return sum(len(regs) for regs in self._index.values())
