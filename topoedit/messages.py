"""Wire messages exchanged with the host.

Inbound messages arrive as plain dicts and are validated with pydantic;
unknown ``type`` values are ignored. Outbound requests carry a ``type`` and a
``payload`` and are answered asynchronously by the host.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
import logging

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

logger = logging.getLogger(__name__)


# ───────────────────────────── Inbound ─────────────────────────────


class ElementPatch(BaseModel):
    model_config = ConfigDict(extra="allow")

    group: Optional[Literal["nodes", "edges"]] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    classes: Optional[Union[str, List[str]]] = None
    position: Optional[Dict[str, float]] = None

    @property
    def id(self) -> Optional[str]:
        raw = self.data.get("id")
        return str(raw) if raw else None

    def to_element(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class YamlSaved(BaseModel):
    type: Literal["yaml-saved"]


class UpdateTopology(BaseModel):
    type: Literal["updateTopology"]
    # Raw elements; each is validated as an ElementPatch when it is applied.
    data: List[Any] = Field(default_factory=list)


class DeploymentStateChanged(BaseModel):
    type: Literal["deployment-state-changed"]
    isLabDeployed: bool = False


InboundMessage = Annotated[
    Union[YamlSaved, UpdateTopology, DeploymentStateChanged],
    Field(discriminator="type"),
]

_INBOUND: TypeAdapter = TypeAdapter(InboundMessage)
INBOUND_TYPES = frozenset({"yaml-saved", "updateTopology", "deployment-state-changed"})


def parse_inbound(raw: Any) -> Optional[Union[YamlSaved, UpdateTopology, DeploymentStateChanged]]:
    """Validate a host message. Returns None for messages this editor does not handle.

    Raises pydantic.ValidationError when a known message is malformed.
    """
    if not isinstance(raw, dict) or raw.get("type") not in INBOUND_TYPES:
        logger.debug("Ignoring host message: %r", raw.get("type") if isinstance(raw, dict) else raw)
        return None
    return _INBOUND.validate_python(raw)


# ───────────────────────────── Outbound ─────────────────────────────


class OutboundType(str, Enum):
    GET_TOPOLOGY = "topo-editor-get-topology"
    GET_ENVIRONMENT = "topo-editor-get-environment"
    SAVE = "topo-editor-save"
    UNDO = "topo-editor-undo"
    RELOAD = "topo-editor-reload"


class OutboundMessage(BaseModel):
    type: OutboundType
    payload: Dict[str, Any] = Field(default_factory=dict)

    @staticmethod
    def get_topology() -> "OutboundMessage":
        return OutboundMessage(type=OutboundType.GET_TOPOLOGY)

    @staticmethod
    def get_environment(keys: List[str]) -> "OutboundMessage":
        return OutboundMessage(type=OutboundType.GET_ENVIRONMENT, payload={"keys": list(keys)})

    @staticmethod
    def save(elements: List[Dict[str, Any]], suppress_notification: bool = True) -> "OutboundMessage":
        return OutboundMessage(
            type=OutboundType.SAVE,
            payload={"elements": elements, "suppressNotification": suppress_notification},
        )

    @staticmethod
    def undo() -> "OutboundMessage":
        return OutboundMessage(type=OutboundType.UNDO)

    @staticmethod
    def reload() -> "OutboundMessage":
        return OutboundMessage(type=OutboundType.RELOAD)
