"""Flow graph models: nodes, edges and the flow definition."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, SerializeAsAny, model_validator

from constants import TRIGGER_NODE
from models.nodes import BaseNodeConfig, parse_node_config


class Edge(BaseModel):
    """Directed connection; ``label`` selects the branch of a condition node."""
    model_config = {"extra": "allow"}

    id: Optional[str] = None
    source: str
    target: str
    label: Optional[str] = None


class Node(BaseModel):
    """One typed step of a flow.

    Accepts configuration under ``config`` or the legacy ``data`` key and
    normalizes it into the typed model for the node's kind.
    """
    model_config = {"extra": "allow"}

    id: str
    type: str
    config: SerializeAsAny[BaseNodeConfig]

    @model_validator(mode="before")
    @classmethod
    def normalize_config(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        data = dict(data)
        legacy = data.pop("data", None)
        raw = data.get("config")
        if raw is None:
            raw = legacy

        if not isinstance(raw, BaseNodeConfig):
            raw = parse_node_config(data.get("type", ""), raw)
        data["config"] = raw
        return data


class Flow(BaseModel):
    """Versioned automation definition owned by one team."""

    id: str
    team_id: str
    name: str
    description: Optional[str] = None
    trigger_type: str
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = False
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def get_node(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def trigger_node(self) -> Optional[Node]:
        for node in self.nodes:
            if node.type == TRIGGER_NODE:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        """Edges leaving ``node_id`` in authoring order."""
        return [edge for edge in self.edges if edge.source == node_id]

    def graph_dict(self) -> Dict[str, Any]:
        """Nodes and edges in their stored JSON shape."""
        return {
            "nodes": [node.model_dump(by_alias=True, exclude_none=True) for node in self.nodes],
            "edges": [edge.model_dump(exclude_none=True) for edge in self.edges],
        }
