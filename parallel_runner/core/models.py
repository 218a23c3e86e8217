# parallel_runner/core/models.py
"""
Data model shared by the dispatcher, the response router and the adapters.

Wire-facing shapes (what the build process sends us) are pydantic models;
in-process records are dataclasses.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field


class MessageType(str, Enum):
    """Message vocabulary shared with the build process and the workers"""
    LOG_ACTION = "LOG_ACTION"
    JOB_CREATED = "JOB_CREATED"
    JOB_COMPLETED = "JOB_COMPLETED"
    JOB_FAILED = "JOB_FAILED"
    JOB_NOT_WHITELISTED = "JOB_NOT_WHITELISTED"
    ACTIVITY_START = "ACTIVITY_START"
    ACTIVITY_END = "ACTIVITY_END"
    ACTIVITY_SUCCESS = "ACTIVITY_SUCCESS"
    ACTIVITY_ERROR = "ACTIVITY_ERROR"


# ---------------------------------------------------------------------------
# Inbound from the build process
# ---------------------------------------------------------------------------

class InputPath(BaseModel):
    model_config = ConfigDict(extra="allow")

    path: str


class JobRequest(BaseModel):
    """Payload of a JOB_CREATED message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    name: str
    input_paths: list[InputPath] = Field(default_factory=list, alias="inputPaths")
    output_dir: str = Field(default="", alias="outputDir")
    args: Any = None


# ---------------------------------------------------------------------------
# In-flight bookkeeping
# ---------------------------------------------------------------------------

CompletionHandler = Callable[[dict], Awaitable[None]]


@dataclass
class DispatchedJob:
    """Correlation table entry for a job awaiting its worker response"""
    id: str
    handler: CompletionHandler
    source: str = ""
    created_at: float = field(default_factory=time.monotonic)

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at


# ---------------------------------------------------------------------------
# Worker wire format
# ---------------------------------------------------------------------------

@dataclass
class WorkerEnvelope:
    """Job as sent to a worker"""
    job_id: str
    payload: dict[str, Any]
    topic_hint: str

    def serialize(self) -> bytes:
        body = dict(self.payload)
        body["topic"] = self.topic_hint
        body["id"] = self.job_id
        return json.dumps(body, separators=(",", ":")).encode("utf-8")


class ResponseKind(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    UNRECOGNIZED = "unrecognized"


_KIND_BY_TYPE = {
    MessageType.JOB_COMPLETED.value: ResponseKind.COMPLETED,
    MessageType.JOB_FAILED.value: ResponseKind.FAILED,
}


@dataclass
class WorkerResponse:
    """Message received back from a worker"""
    kind: ResponseKind
    job_id: str | None = None
    result: dict[str, Any] | None = None
    error: Any = None
    raw: Any = None

    @classmethod
    def from_bytes(cls, data: bytes) -> "WorkerResponse":
        """
        Decode an inbound bus message.

        Never raises: anything that is not a well-formed JOB_COMPLETED or
        JOB_FAILED message with a ``payload.id`` comes back UNRECOGNIZED.
        """
        try:
            message = json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return cls(kind=ResponseKind.UNRECOGNIZED, raw=data)

        if not isinstance(message, dict):
            return cls(kind=ResponseKind.UNRECOGNIZED, raw=message)

        kind = _KIND_BY_TYPE.get(message.get("type"))
        payload = message.get("payload")
        if kind is None or not isinstance(payload, dict) or payload.get("id") is None:
            return cls(kind=ResponseKind.UNRECOGNIZED, raw=message)

        job_id = str(payload["id"])
        if kind is ResponseKind.COMPLETED:
            return cls(kind=kind, job_id=job_id, result=payload, raw=message)
        return cls(kind=kind, job_id=job_id, error=payload.get("error"), raw=message)


# ---------------------------------------------------------------------------
# Outbound to the build process
# ---------------------------------------------------------------------------

@dataclass
class JobCompleted:
    id: str
    result: dict[str, Any]

    def to_message(self) -> dict:
        return {
            "type": MessageType.JOB_COMPLETED.value,
            "payload": {"id": self.id, "result": self.result},
        }


@dataclass
class JobFailed:
    id: str
    error: Any
    extra: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict:
        payload = dict(self.extra)
        payload["id"] = self.id
        payload["error"] = self.error
        return {"type": MessageType.JOB_FAILED.value, "payload": payload}


@dataclass
class NotPermitted:
    id: str

    def to_message(self) -> dict:
        return {
            "type": MessageType.JOB_NOT_WHITELISTED.value,
            "payload": {"id": self.id},
        }


ProducerEvent = JobCompleted | JobFailed | NotPermitted
