"""Wire format of the telemetry feed.

Inbound frames are JSON objects tagged by a ``type`` field. They are
validated once here into pydantic DTOs and then turned into one of the
frame variants below, so the channel only ever matches on concrete types.
"""
from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, TypeAdapter, ValidationError, field_validator

from telemetry_stream.exceptions import FrameDecodeError
from telemetry_stream.models import DEFAULT_ENTITY_ID, Sample, now_ms

FRAME_MULTI_METRIC = "multi-metric"
FRAME_METRIC = "metric"
FRAME_INFO = "info"
FRAME_MODE = "mode"
FRAME_PING = "ping"

INBOUND_FRAME_TYPES: tuple[str, ...] = (FRAME_MULTI_METRIC, FRAME_METRIC, FRAME_INFO, FRAME_MODE)


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------
class MetricEntryDTO(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    node: str | None = None
    ts: float | None = None
    throughput: float | None = None
    latency_ms: float | None = Field(default=None, alias="latencyMs")
    alert_rate: float | None = Field(default=None, alias="alertRate")
    flow_index: float | None = Field(default=None, alias="flowIndex")

    @field_validator("node", mode="before")
    @classmethod
    def _node_as_text(cls, value: Any) -> str | None:
        if isinstance(value, str) and value:
            return value
        return None

    @field_validator("ts", mode="before")
    @classmethod
    def _ts_as_number(cls, value: Any) -> float | None:
        # Missing, non-numeric or non-finite timestamps fall back to the receive time.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        try:
            number = float(value)
        except OverflowError:
            return None
        if not math.isfinite(number):
            return None
        return number

    def to_sample(self, *, received_at: int) -> Sample:
        return Sample(
            entity_id=self.node or DEFAULT_ENTITY_ID,
            timestamp=int(self.ts) if self.ts is not None else received_at,
            throughput=self.throughput,
            latency=self.latency_ms,
            alert_rate=self.alert_rate,
            flow_index=self.flow_index,
        )


class MultiMetricFrameDTO(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["multi-metric"]
    data: list[MetricEntryDTO]

    @field_validator("data", mode="before")
    @classmethod
    def _drop_entries_without_node(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [
            entry
            for entry in value
            if isinstance(entry, Mapping) and isinstance(entry.get("node"), str) and entry["node"]
        ]


class MetricFrameDTO(MetricEntryDTO):
    type: Literal["metric"]


class InfoFrameDTO(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["info"]
    nodes: list[StrictStr]


class ModeFrameDTO(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["mode"]
    mode: StrictStr


_FRAME_ADAPTER: TypeAdapter[Any] = TypeAdapter(
    Annotated[
        Union[MultiMetricFrameDTO, MetricFrameDTO, InfoFrameDTO, ModeFrameDTO],
        Field(discriminator="type"),
    ]
)


# ---------------------------------------------------------------------------
# Frame variants
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BatchMetricFrame:
    """Samples that arrived together in one ``multi-metric`` frame."""

    samples: tuple[Sample, ...]

    @property
    def entity_ids(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(s.entity_id for s in self.samples))


@dataclass(frozen=True, slots=True)
class MetricFrame:
    sample: Sample


@dataclass(frozen=True, slots=True)
class EntityListFrame:
    entity_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ModeFrame:
    mode: str


Frame = BatchMetricFrame | MetricFrame | EntityListFrame | ModeFrame


def parse_frame(raw: str | bytes | bytearray, *, received_at: int | None = None) -> Frame | None:
    """Decode one inbound frame.

    Returns ``None`` for well-formed frames of a kind this client does not
    handle. Raises :class:`FrameDecodeError` when the payload is not JSON or
    does not match the schema of its ``type``.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise FrameDecodeError("frame is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise FrameDecodeError("frame is not a JSON object")

    frame_type = payload.get("type")
    if frame_type not in INBOUND_FRAME_TYPES:
        return None

    try:
        dto = _FRAME_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise FrameDecodeError(f"invalid {frame_type} frame: {exc.error_count()} error(s)") from exc

    ts = received_at if received_at is not None else now_ms()
    if isinstance(dto, MultiMetricFrameDTO):
        return BatchMetricFrame(samples=tuple(entry.to_sample(received_at=ts) for entry in dto.data))
    if isinstance(dto, MetricFrameDTO):
        return MetricFrame(sample=dto.to_sample(received_at=ts))
    if isinstance(dto, InfoFrameDTO):
        return EntityListFrame(entity_ids=tuple(dto.nodes))
    return ModeFrame(mode=dto.mode)


def encode_frame(message: Mapping[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


def ping_frame(ts: int | None = None) -> dict[str, Any]:
    return {"type": FRAME_PING, "ts": ts if ts is not None else now_ms()}


def mode_frame(mode: str) -> dict[str, Any]:
    return {"type": FRAME_MODE, "mode": mode}
