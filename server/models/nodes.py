"""Typed node configuration with Pydantic v2 discriminated unions.

Raw node configuration arrives under either ``config`` or the legacy ``data``
key. It is normalized once, when a flow is loaded or saved, into one typed
model per node kind. Every field has a default so a stored flow always
loads; required-field checks live in the flow validator, which reports all
problems at save time.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter

from constants import NODE_TYPES


# =============================================================================
# BASE MODELS
# =============================================================================

class BaseNodeConfig(BaseModel):
    """Base class for all node configurations.

    Also used as-is for node types the engine does not know, so that the
    dispatcher can reject them at run time instead of the flow failing to load.
    """
    model_config = {"extra": "allow", "populate_by_name": True}

    type: str


# =============================================================================
# CONTROL NODES
# =============================================================================

class TriggerNodeConfig(BaseNodeConfig):
    type: Literal["trigger"]


class WaitNodeConfig(BaseNodeConfig):
    """Suspend the run for ``duration`` units before the next node."""
    type: Literal["wait"]
    duration: float = 0
    unit: str = "seconds"


class ConditionRule(BaseModel):
    """One predicate: ``contact.X`` or a variable name, compared by ``operator``."""
    model_config = {"extra": "allow"}

    field: str = ""
    operator: str = ""
    value: Any = None


class ConditionNodeConfig(BaseNodeConfig):
    type: Literal["condition"]
    conditions: List[ConditionRule] = Field(default_factory=list)
    operator: str = "AND"


class BranchNodeConfig(BaseNodeConfig):
    type: Literal["branch"]
    branches: List[Dict[str, Any]] = Field(default_factory=list)


class PassThroughNodeConfig(BaseNodeConfig):
    """Reserved node kinds without behavior of their own."""
    type: Literal["ai_chatbot", "join"]


class EndNodeConfig(BaseNodeConfig):
    type: Literal["end"]


# =============================================================================
# SIDE-EFFECT NODES
# =============================================================================

class SendMessageNodeConfig(BaseNodeConfig):
    type: Literal["send_message"]
    message: str = ""
    message_type: str = Field(default="text", alias="messageType")
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    account_id: Optional[str] = Field(default=None, alias="accountId")


class TagNodeConfig(BaseNodeConfig):
    type: Literal["add_tag", "remove_tag"]
    tags: List[str] = Field(default_factory=list)


class UpdateFieldNodeConfig(BaseNodeConfig):
    type: Literal["update_field"]
    field: str = ""
    value: Any = None


class HttpRequestNodeConfig(BaseNodeConfig):
    type: Literal["http_request"]
    url: str = ""
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    timeout: Optional[float] = Field(default=None, gt=0, le=300)


# =============================================================================
# DISCRIMINATED UNION
# =============================================================================

NodeConfig = Annotated[
    Union[
        # Control
        TriggerNodeConfig, WaitNodeConfig, ConditionNodeConfig,
        BranchNodeConfig, PassThroughNodeConfig, EndNodeConfig,
        # Side effects
        SendMessageNodeConfig, TagNodeConfig, UpdateFieldNodeConfig,
        HttpRequestNodeConfig,
    ],
    Field(discriminator="type")
]

_node_config_adapter = TypeAdapter(NodeConfig)


def parse_node_config(node_type: str, raw: Optional[Dict[str, Any]]) -> BaseNodeConfig:
    """Validate raw configuration into the model for ``node_type``.

    Known node types are routed by the discriminator and raise
    ``ValidationError`` on malformed values. Unknown types fall back to
    ``BaseNodeConfig``.
    """
    params = {**(raw or {}), "type": node_type}

    if node_type in NODE_TYPES:
        return _node_config_adapter.validate_python(params)
    return BaseNodeConfig(**params)
