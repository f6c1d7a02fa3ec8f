"""Data records shared by the collector and the gateway."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

__all__ = ["GPU", "TelemetryRecord", "Sample", "ModelSummary", "GPUFilter", "TelemetryFilter"]


def _format_time(value: datetime) -> str:
    """Render a timestamp as RFC 3339 with trailing fractional zeros trimmed."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    seconds = int(offset.total_seconds()) if offset is not None else 0
    if seconds == 0:
        return text + "Z"
    sign = "+" if seconds > 0 else "-"
    hours, minutes = divmod(abs(seconds) // 60, 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


@dataclass
class GPU:
    """A row of the GPU dimension table."""

    uuid: str
    gpu_index: str
    device: str
    model_name: str
    hostname: str
    created_at: datetime
    updated_at: datetime

    def to_json(self) -> Dict[str, Any]:
        return {
            "uuid": self.uuid,
            "gpu_index": self.gpu_index,
            "device": self.device,
            "model_name": self.model_name,
            "hostname": self.hostname,
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
        }


@dataclass
class TelemetryRecord:
    """One stored metric sample, as read back by the gateway."""

    id: int
    uuid: str
    metric_name: str
    ingested_at: datetime
    sample_at: datetime
    value: float
    container: str = ""
    pod: str = ""
    namespace: str = ""
    labels_raw: str = ""

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "uuid": self.uuid,
            "metric_name": self.metric_name,
            "ingested_at": _format_time(self.ingested_at),
            "sample_at": _format_time(self.sample_at),
            "value": self.value,
        }
        optional = {
            "container": self.container,
            "pod": self.pod,
            "namespace": self.namespace,
            "labels_raw": self.labels_raw,
        }
        out.update({key: val for key, val in optional.items() if val})
        return out


@dataclass
class Sample:
    """A parsed telemetry sample ready to be written by the collector."""

    uuid: str
    metric_name: str
    ingested_at: datetime
    sample_at: datetime
    value: float
    container: str = ""
    pod: str = ""
    namespace: str = ""
    labels_raw: str = ""


@dataclass
class ModelSummary:
    """A GPU model name and how many GPUs carry it."""

    model_name: str
    gpu_count: int

    def to_json(self) -> Dict[str, Any]:
        return {"model_name": self.model_name, "gpu_count": self.gpu_count}


@dataclass
class GPUFilter:
    """Optional GPU filters; empty strings mean no filter on that field."""

    model_name: str = ""
    hostname: str = ""
    limit: int = 0
    offset: int = 0


@dataclass
class TelemetryFilter:
    """Optional telemetry filters; empty or ``None`` values mean no filter."""

    uuid: str = ""
    metric_name: str = ""
    model_name: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: int = 0
    offset: int = 0