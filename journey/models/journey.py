"""Journey graph data model.

A journey is a directed graph of typed steps. Each node carries a ``kind``
discriminant plus a payload model specific to that kind; ports are never
stored, they are derived from ``(kind, payload)`` by the port table.

Field names are snake_case in Python and camelCase on the wire
(``sourceHandle``, ``nextNodeId``...), so documents produced by the editor
load unchanged.
"""
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BeforeValidator, BaseModel, ConfigDict, Field, field_validator, model_validator


class NodeKind(str, Enum):
    """Types of journey steps."""
    START = "start"
    SUCCESS_END = "successEnd"
    ERROR_END = "errorEnd"
    CONDITION = "condition"
    MULTI_CONDITION = "multiCondition"
    SWITCH = "switch"
    CONTEXT_OPERATION = "contextOperation"
    FORM = "frontendForm"
    HTTP_REQUEST = "httpRequest"
    JSON_PARSER = "jsonParser"


class PortDirection(str, Enum):
    """Direction of a port relative to its node."""
    IN = "in"
    OUT = "out"


class PortSide(str, Enum):
    """Side of the node a port is drawn on (used by the layout engine)."""
    WEST = "west"
    EAST = "east"
    NORTH = "north"
    SOUTH = "south"


class PortRole(str, Enum):
    """Semantic role of an output port, drives edge color and label."""
    SUCCESS = "success"
    ERROR = "error"
    YES = "yes"
    NO = "no"
    CASE = "case"
    ELSE = "else"
    DEFAULT = "default"
    PLAIN = "plain"


def _coerce_text(value: Any) -> Any:
    """Accept numbers where free text is expected (e.g. a case value of 200)."""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    return value


Text = Annotated[str, BeforeValidator(_coerce_text)]


class Position(BaseModel):
    """2D position for node layout."""

    x: float = Field(0, description="X coordinate")
    y: float = Field(0, description="Y coordinate")

    @field_validator("x", "y")
    @classmethod
    def ensure_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("Position coordinates must be finite numbers")
        return v


# =============================================================================
# PAYLOADS
# One model per node kind. Unknown keys are kept so that documents written by
# newer editors survive a round trip.
# =============================================================================


class PayloadModel(BaseModel):
    """Fields shared by every node payload."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    label: str = Field("", description="Display name of the step")
    description: Optional[str] = Field(None, description="Optional notes")


class StartPayload(PayloadModel):
    label: str = "Start"


class SuccessEndPayload(PayloadModel):
    label: str = "Success"


class ErrorEndPayload(PayloadModel):
    label: str = "Error"


class ConditionClause(BaseModel):
    """A single comparison inside a Condition node."""

    field: str = ""
    operator: str = "equals"
    value: Text = ""


class ConditionPayload(PayloadModel):
    """Binary branch: all clauses combined decide between ``yes`` and ``no``."""

    label: str = "Condition"
    clauses: list[ConditionClause] = Field(default_factory=list)
    combinator: Literal["and", "or"] = "and"


class ConditionCase(BaseModel):
    """One branch of a MultiCondition node, addressed positionally."""

    id: Optional[str] = Field(None, description="Stable id (ports stay positional)")
    condition: Text = ""
    operator: str = "equals"
    value: Text = ""


class MultiConditionPayload(PayloadModel):
    label: str = "Multi Condition"
    conditions: list[ConditionCase] = Field(default_factory=list)


class SwitchCase(BaseModel):
    """One branch of a Switch node, addressed by its stable ``id``."""

    id: Optional[str] = Field(None, description="Stable port id")
    value: Text = Field("", description="Literal value matched by this case")


class SwitchPayload(PayloadModel):
    label: str = "Switch"
    expression: str = Field("", description="Expression whose value is switched on")
    cases: list[SwitchCase] = Field(default_factory=list)
    default_label: Optional[str] = Field(
        None,
        alias="defaultLabel",
        description="Label of the fall-through path",
    )


class ContextMutation(BaseModel):
    """A single change applied to the journey context."""

    key: str = ""
    action: Literal["set", "unset", "append", "increment"] = "set"
    value: Any = None


class ContextOperationPayload(PayloadModel):
    label: str = "Context Operation"
    operations: list[ContextMutation] = Field(default_factory=list)


class FormPayload(PayloadModel):
    """Form-collection step. Its schema is an attachment owned elsewhere."""

    label: str = "Frontend - Form"


class KeyValue(BaseModel):
    key: str = ""
    value: Text = ""


class HttpAuth(BaseModel):
    """Authentication settings for an HTTP step."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["none", "basic", "bearer", "apiKey"] = "none"
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    header_name: Optional[str] = Field(None, alias="headerName")
    api_key: Optional[str] = Field(None, alias="apiKey")


class HttpRequestPayload(PayloadModel):
    label: str = "HTTP Request"
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"] = "GET"
    url: str = ""
    headers: list[KeyValue] = Field(default_factory=list)
    query: list[KeyValue] = Field(default_factory=list)
    body: Optional[str] = None
    auth: HttpAuth = Field(default_factory=HttpAuth)
    response_shape: Literal["json", "text", "binary"] = Field("json", alias="responseShape")
    timeout_ms: int = Field(30000, alias="timeoutMs", ge=0)

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v):
        return v.upper() if isinstance(v, str) else v


class JsonExtraction(BaseModel):
    """Copies the value found at ``path`` into the context under ``key``."""

    key: str = ""
    path: str = ""


class JsonParserPayload(PayloadModel):
    label: str = "JSON Parser"
    source: str = Field("response.body", description="Context path holding the JSON text")
    extractions: list[JsonExtraction] = Field(default_factory=list)
    strict: bool = Field(False, description="Fail the step when a path is missing")


NodePayload = Union[
    StartPayload,
    SuccessEndPayload,
    ErrorEndPayload,
    ConditionPayload,
    MultiConditionPayload,
    SwitchPayload,
    ContextOperationPayload,
    FormPayload,
    HttpRequestPayload,
    JsonParserPayload,
]

PAYLOAD_MODELS: dict[NodeKind, type[PayloadModel]] = {
    NodeKind.START: StartPayload,
    NodeKind.SUCCESS_END: SuccessEndPayload,
    NodeKind.ERROR_END: ErrorEndPayload,
    NodeKind.CONDITION: ConditionPayload,
    NodeKind.MULTI_CONDITION: MultiConditionPayload,
    NodeKind.SWITCH: SwitchPayload,
    NodeKind.CONTEXT_OPERATION: ContextOperationPayload,
    NodeKind.FORM: FormPayload,
    NodeKind.HTTP_REQUEST: HttpRequestPayload,
    NodeKind.JSON_PARSER: JsonParserPayload,
}

# Fields set by the canvas that never reach persistence
TRANSIENT_NODE_FIELDS = {"width", "height", "selected", "dragging"}
TRANSIENT_EDGE_FIELDS = {"selected"}


def build_payload(kind: NodeKind, data: Optional[dict] = None) -> PayloadModel:
    """Build the payload model for ``kind`` from plain data."""
    return PAYLOAD_MODELS[kind].model_validate(data or {})


def _stringify_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# =============================================================================
# GRAPH ELEMENTS
# =============================================================================


class JourneyNode(BaseModel):
    """A step in the journey graph."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Sequential numeric id, as a string")
    kind: NodeKind = Field(..., description="Node kind discriminant")
    position: Position = Field(default_factory=Position)
    payload: NodePayload = Field(..., description="Kind-specific data")

    # Transient canvas state
    width: Optional[float] = None
    height: Optional[float] = None
    selected: bool = False
    dragging: bool = False

    @model_validator(mode="before")
    @classmethod
    def coerce_payload(cls, data: Any) -> Any:
        """Parse the payload with the model registered for the node kind."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["id"] = _stringify_id(data.get("id"))
        try:
            kind = NodeKind(data.get("kind"))
        except ValueError:
            return data
        payload = data.get("payload")
        model = PAYLOAD_MODELS[kind]
        if payload is None:
            data["payload"] = model()
        elif isinstance(payload, dict):
            data["payload"] = model.model_validate(payload)
        return data

    @model_validator(mode="after")
    def check_payload_kind(self):
        """Ensure the payload model matches the kind."""
        expected = PAYLOAD_MODELS[self.kind]
        if type(self.payload) is not expected:
            raise ValueError(
                f"Payload {type(self.payload).__name__} does not match kind '{self.kind.value}'"
            )
        return self

    @property
    def label(self) -> str:
        return self.payload.label

    def to_persisted(self) -> dict:
        """Project to the persisted shape, dropping canvas-only fields."""
        return self.model_dump(by_alias=True, mode="json", exclude=TRANSIENT_NODE_FIELDS)


class JourneyEdge(BaseModel):
    """A connection from an output port to an input port."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field("", description="Derived from endpoints, see build_edge_id")
    source: str = Field(..., description="Source node ID")
    source_handle: str = Field(..., alias="sourceHandle", description="Output port ID")
    target: str = Field(..., description="Target node ID")
    target_handle: str = Field(..., alias="targetHandle", description="Input port ID")

    # Derived from the source port, recomputed on every payload change
    label: str = Field("", description="Display label for the edge")
    color_role: PortRole = Field(PortRole.PLAIN, alias="colorRole")

    # Transient canvas state
    selected: bool = False

    @model_validator(mode="before")
    @classmethod
    def coerce_ids(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("id", "source", "target"):
            if key in data:
                data[key] = _stringify_id(data[key])
        if data.get("id") is None:
            data["id"] = ""
        return data

    def to_persisted(self) -> dict:
        """Project to the persisted shape, dropping canvas-only fields."""
        return self.model_dump(by_alias=True, mode="json", exclude=TRANSIENT_EDGE_FIELDS)


class Port(BaseModel):
    """A connection point computed from a node's kind and payload."""

    id: str
    direction: PortDirection
    side: PortSide
    role: PortRole = PortRole.PLAIN
    index: int = Field(0, description="Order among the ports on the same side")
    label: str = ""


class PortStyle(BaseModel):
    """Visual policy for edges leaving a port."""

    model_config = ConfigDict(populate_by_name=True)

    role: PortRole
    color: str
    stroke_width: int = Field(2, alias="strokeWidth")
    label: str = ""


# =============================================================================
# DOCUMENTS
# =============================================================================


class JourneyDocument(BaseModel):
    """The persisted shape of a journey graph."""

    model_config = ConfigDict(populate_by_name=True)

    nodes: list[JourneyNode] = Field(default_factory=list)
    edges: list[JourneyEdge] = Field(default_factory=list)
    next_node_id: int = Field(2, alias="nextNodeId", ge=1)

    def get_node(self, node_id: str) -> Optional[JourneyNode]:
        """Get a node by its ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_persisted(self) -> dict:
        return {
            "nodes": [node.to_persisted() for node in self.nodes],
            "edges": [edge.to_persisted() for edge in self.edges],
            "nextNodeId": self.next_node_id,
        }


class ExportDocument(JourneyDocument):
    """A self-contained export of a journey and its form schemas."""

    version: str = Field("1.0", description="Export format version")
    exported_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="exportedAt",
    )
    form_schemas: dict[str, dict] = Field(default_factory=dict, alias="formSchemas")

    def to_persisted(self) -> dict:
        data = super().to_persisted()
        return {
            "version": self.version,
            "exportedAt": self.exported_at.isoformat(),
            **data,
            "formSchemas": self.form_schemas,
        }
