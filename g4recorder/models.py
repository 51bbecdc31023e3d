from __future__ import annotations

from copy import deepcopy
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter


Json = Dict[str, Any]
CaptureMode = Literal["standard", "user32", "coordinate"]


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class EventPhase(str, Enum):
    DOWN = "down"
    UP = "up"


class MouseButton(str, Enum):
    LEFT = "left"
    MIDDLE = "middle"
    RIGHT = "right"
    UNKNOWN = "unknown"


# -------- UI element chain --------

class Bounds(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    # The engine sends X/Y upper-cased and width/height lower-cased.
    x: float = Field(default=0.0, validation_alias=AliasChoices("x", "X"))
    y: float = Field(default=0.0, validation_alias=AliasChoices("y", "Y"))
    width: float = Field(default=0.0, validation_alias=AliasChoices("width", "Width"))
    height: float = Field(default=0.0, validation_alias=AliasChoices("height", "Height"))


class UiElementNode(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    bounds: Optional[Bounds] = None
    automation_id: Optional[str] = Field(default=None, alias="automationId")
    name: Optional[str] = None
    control_type: Optional[str] = Field(default=None, alias="controlType")
    class_name: Optional[str] = Field(default=None, alias="className")
    is_trigger_element: Optional[bool] = Field(default=None, alias="isTriggerElement")


class UiChain(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    locator: str = ""
    path: List[UiElementNode] = Field(default_factory=list)

    @property
    def trigger(self) -> Optional[UiElementNode]:
        """Deepest element of the chain, the one the user actually interacted with."""
        return self.path[-1] if self.path else None


# -------- raw events (decoded once at the connection boundary) --------

class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    timestamp: int
    machine_name: str = Field(alias="machineName")
    event: str
    phase: Optional[EventPhase] = None
    chain: UiChain = Field(default_factory=UiChain)


class PointerEvent(_EventBase):
    type: Literal["mouse"] = "mouse"
    button: MouseButton = MouseButton.UNKNOWN
    x: Optional[float] = None
    y: Optional[float] = None


class KeyEvent(_EventBase):
    type: Literal["keyboard"] = "keyboard"
    key: str = ""


RawEvent = Annotated[Union[PointerEvent, KeyEvent], Field(discriminator="type")]
RAW_EVENT_ADAPTER: TypeAdapter = TypeAdapter(RawEvent)


class NormalizedEvent(BaseModel):
    """
    A release event that survived filtering.

    element_id is a geometric fingerprint of the trigger element; it is only
    a diagnostic aid and is never used to decide what gets compiled.
    """
    model_config = ConfigDict(frozen=True)

    element_id: str
    locator: str
    bounds: Bounds
    event: RawEvent
    base_url: Optional[str] = None

    @property
    def timestamp(self) -> int:
        return self.event.timestamp

    @property
    def machine_name(self) -> str:
        return self.event.machine_name

    @property
    def is_keyboard(self) -> bool:
        return isinstance(self.event, KeyEvent)


# -------- settings --------

class ThinkTimeSettings(BaseModel):
    """Bounds in milliseconds for synthesized pauses between actions."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    enabled: bool = False
    min_think_time: int = Field(default=0, ge=0, alias="minThinkTime")
    max_think_time: int = Field(default=0, ge=0, alias="maxThinkTime")


class ConnectionOptions(BaseModel):
    """Per-endpoint settings supplied by the host when a connection is created."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    base_url: str = Field(
        validation_alias=AliasChoices("baseUrl", "url", "base_url"),
        serialization_alias="baseUrl",
    )
    mode: CaptureMode = "standard"
    driver_parameters: Json = Field(default_factory=dict, alias="driverParameters")
    think_time_settings: ThinkTimeSettings = Field(
        default_factory=ThinkTimeSettings, alias="thinkTimeSettings"
    )
    hub_path: str = Field(default="/hub/v4/g4/notifications", alias="hubPath")
    event_target: str = Field(default="ReceiveRecordingEvent", alias="eventTarget")
    reconnect_delay: float = Field(default=5.0, gt=0, alias="reconnectDelay")


# -------- segmentation --------

class BufferGroup(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    machine_name: str = Field(alias="machineName")
    events: List[NormalizedEvent] = Field(default_factory=list)
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    think_time_settings: Optional[ThinkTimeSettings] = Field(default=None, alias="thinkTimeSettings")


# -------- automation document --------

class RuleContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: Optional[int] = None
    x: Optional[float] = None
    y: Optional[float] = None


class Rule(BaseModel):
    """One executable action. The G4 engine dispatches on pluginName."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["Action"] = Field(default="Action", alias="$type")
    plugin_name: str = Field(alias="pluginName")
    on_element: Optional[str] = Field(default=None, alias="onElement")
    argument: Optional[str] = None
    context: Optional[RuleContext] = None
    capabilities: Optional[Dict[str, Any]] = None

    @property
    def timestamp(self) -> Optional[int]:
        return self.context.timestamp if self.context else None


class Reference(BaseModel):
    id: str
    name: str
    description: str = ""


class Job(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reference: Reference
    driver_parameters: Json = Field(default_factory=dict, alias="driverParameters")
    rules: List[Rule] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.reference.id

    @property
    def name(self) -> str:
        return self.reference.name

    @property
    def description(self) -> str:
        return self.reference.description


class Stage(BaseModel):
    reference: Reference
    jobs: List[Job] = Field(default_factory=list)


class Authentication(BaseModel):
    token: str = ""


class Automation(BaseModel):
    """Root document handed to the workflow viewer."""
    model_config = ConfigDict(populate_by_name=True)

    authentication: Authentication = Field(default_factory=Authentication)
    driver_parameters: Json = Field(default_factory=dict, alias="driverParameters")
    settings: Json = Field(default_factory=dict)
    stages: List[Stage] = Field(default_factory=list)

    @property
    def jobs(self) -> List[Job]:
        return [job for stage in self.stages for job in stage.jobs]

    def to_payload(self) -> Json:
        """
        Wire form of the document. Always a fresh structure so the receiver
        never shares state with this object.
        """
        return deepcopy(self.model_dump(mode="json", by_alias=True, exclude_none=True))
