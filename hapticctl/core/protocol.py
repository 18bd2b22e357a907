"""Buttplug protocol messages and their JSON wire encoding.

A frame is a JSON array of single-key objects, the key naming the message
kind and the value carrying its fields, e.g. ``[{"Ok": {"Id": 3}}]``.
Inbound frames are validated against ``schemas/messages.schema.json``
before being turned into message objects.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources
from typing import Any, ClassVar

from jsonschema import ValidationError, validators

from hapticctl.core.errors import ProtocolError
from hapticctl.core.model import Device, MessageAttributes


@dataclass(frozen=True)
class FeatureSpeed:
    index: int
    speed: float


@dataclass(frozen=True)
class RequestServerInfo:
    KIND: ClassVar[str] = "RequestServerInfo"
    id: int
    message_version: int
    client_name: str

    def fields(self) -> dict[str, Any]:
        return {"Id": self.id, "MessageVersion": self.message_version, "ClientName": self.client_name}


@dataclass(frozen=True)
class RequestDeviceList:
    KIND: ClassVar[str] = "RequestDeviceList"
    id: int

    def fields(self) -> dict[str, Any]:
        return {"Id": self.id}


@dataclass(frozen=True)
class StartScanning:
    KIND: ClassVar[str] = "StartScanning"
    id: int

    def fields(self) -> dict[str, Any]:
        return {"Id": self.id}


@dataclass(frozen=True)
class StopScanning:
    KIND: ClassVar[str] = "StopScanning"
    id: int

    def fields(self) -> dict[str, Any]:
        return {"Id": self.id}


@dataclass(frozen=True)
class StopAllDevices:
    KIND: ClassVar[str] = "StopAllDevices"
    id: int

    def fields(self) -> dict[str, Any]:
        return {"Id": self.id}


@dataclass(frozen=True)
class Ping:
    KIND: ClassVar[str] = "Ping"
    id: int

    def fields(self) -> dict[str, Any]:
        return {"Id": self.id}


@dataclass(frozen=True)
class VibrateCmd:
    KIND: ClassVar[str] = "VibrateCmd"
    id: int
    device_index: int
    speeds: tuple[FeatureSpeed, ...]

    def fields(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "DeviceIndex": self.device_index,
            "Speeds": [{"Index": s.index, "Speed": s.speed} for s in self.speeds],
        }


Request = (
    RequestServerInfo
    | RequestDeviceList
    | StartScanning
    | StopScanning
    | StopAllDevices
    | Ping
    | VibrateCmd
)


@dataclass(frozen=True)
class ServerInfo:
    id: int
    message_version: int
    max_ping_time: int
    server_name: str | None = None


@dataclass(frozen=True)
class DeviceList:
    id: int
    devices: tuple[Device, ...]


@dataclass(frozen=True)
class DeviceAdded:
    id: int
    device_index: int
    device_name: str | None = None


@dataclass(frozen=True)
class DeviceRemoved:
    id: int
    device_index: int


@dataclass(frozen=True)
class Ok:
    id: int


@dataclass(frozen=True)
class ScanningFinished:
    id: int


@dataclass(frozen=True)
class Error:
    id: int
    message: str
    code: int | None = None


@dataclass(frozen=True)
class UnknownMessage:
    kind: str
    id: int
    payload: dict[str, Any] = field(default_factory=dict)


Response = (
    ServerInfo
    | DeviceList
    | DeviceAdded
    | DeviceRemoved
    | Ok
    | ScanningFinished
    | Error
    | UnknownMessage
)


@lru_cache(maxsize=1)
def _message_validator() -> Any:
    schema_text = resources.files("hapticctl.schemas").joinpath("messages.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _decode_attributes(raw: Any) -> MessageAttributes:
    if not isinstance(raw, dict):
        return MessageAttributes()
    step_count = raw.get("StepCount")
    return MessageAttributes(
        feature_count=raw.get("FeatureCount"),
        step_count=tuple(step_count) if step_count is not None else None,
    )


def _decode_device(raw: dict[str, Any]) -> Device:
    return Device(
        index=raw["DeviceIndex"],
        name=raw["DeviceName"],
        messages={name: _decode_attributes(value) for name, value in raw["DeviceMessages"].items()},
    )


def _decode_message(kind: str, body: dict[str, Any]) -> Response:
    if kind == "ServerInfo":
        return ServerInfo(
            id=body["Id"],
            message_version=body["MessageVersion"],
            max_ping_time=body["MaxPingTime"],
            server_name=body.get("ServerName"),
        )
    if kind == "DeviceList":
        return DeviceList(id=body["Id"], devices=tuple(_decode_device(d) for d in body["Devices"]))
    if kind == "DeviceAdded":
        return DeviceAdded(id=body["Id"], device_index=body["DeviceIndex"], device_name=body.get("DeviceName"))
    if kind == "DeviceRemoved":
        return DeviceRemoved(id=body["Id"], device_index=body["DeviceIndex"])
    if kind == "Ok":
        return Ok(id=body["Id"])
    if kind == "ScanningFinished":
        return ScanningFinished(id=body["Id"])
    if kind == "Error":
        return Error(id=body["Id"], message=body["ErrorMessage"], code=body.get("ErrorCode"))
    return UnknownMessage(kind=kind, id=body["Id"], payload=body)


def decode_batch(text: str) -> list[Response]:
    try:
        loaded = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Inbound frame is not valid JSON: {exc}") from exc

    try:
        _message_validator().validate(loaded)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProtocolError(f"Inbound frame failed validation{where}: {exc.message}") from exc

    messages: list[Response] = []
    for entry in loaded:
        ((kind, body),) = entry.items()
        messages.append(_decode_message(kind, body))
    return messages


def encode_batch(requests: list[Request]) -> str:
    return json.dumps([{request.KIND: request.fields()} for request in requests])
