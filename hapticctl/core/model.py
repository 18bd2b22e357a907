"""Core data models used across resolver, translator, and CLI."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from hapticctl.core.errors import CapabilityError, RuleParseError

FIRST_MATCH_TOKEN = "@1"
WILDCARD_TOKEN = "*"

_RULE_NAME_RE = re.compile(r"^[_a-z][_a-z-]*$")
_INDEX_RE = re.compile(r"-?[0-9]+")


def _parse_int(text: str) -> int | None:
    # ASCII digits only; int() would also take "1_0", "+3" and other scripts
    if not _INDEX_RE.fullmatch(text):
        return None
    return int(text)


@dataclass(frozen=True)
class AnyName:
    """Rule pattern matching every identifier."""

    def match(self, identifier: str) -> bool:
        return True

    def __str__(self) -> str:
        return WILDCARD_TOKEN


@dataclass(frozen=True)
class LiteralName:
    name: str

    def match(self, identifier: str) -> bool:
        return identifier == self.name

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class LiteralIndex:
    index: int

    def match(self, identifier: str) -> bool:
        return _parse_int(identifier) == self.index

    def __str__(self) -> str:
        return str(self.index)


RuleName = AnyName | LiteralName | LiteralIndex


def parse_rule_name(text: str) -> RuleName:
    if text == WILDCARD_TOKEN:
        return AnyName()
    index = _parse_int(text)
    if index is not None:
        return LiteralIndex(index)
    if _RULE_NAME_RE.match(text):
        return LiteralName(text)
    raise RuleParseError(
        f"Invalid alias pattern '{text}': expected '*', an index, or a lowercase name"
    )


@dataclass(frozen=True)
class MessageAttributes:
    feature_count: int | None = None
    step_count: tuple[int, ...] | None = None


@dataclass(frozen=True)
class Device:
    """A device announced by the server in a DeviceList."""

    index: int
    name: str
    messages: dict[str, MessageAttributes]

    def vibration_features(self) -> int:
        attributes = self.messages.get("VibrateCmd")
        if attributes is None or attributes.feature_count is None:
            raise CapabilityError(
                f"Device {self.index} ({self.name}) does not support vibration"
            )
        return attributes.feature_count


@dataclass(frozen=True)
class FirstMatch:
    """Address meaning whichever connected device comes first."""

    def matches(self, device: Device) -> bool:
        return True

    def __str__(self) -> str:
        return FIRST_MATCH_TOKEN


@dataclass(frozen=True)
class DeviceIndex:
    index: int

    def matches(self, device: Device) -> bool:
        return device.index == self.index

    def __str__(self) -> str:
        return str(self.index)


@dataclass(frozen=True)
class DeviceName:
    name: str

    def matches(self, device: Device) -> bool:
        return device.name.casefold() == self.name.casefold()

    def __str__(self) -> str:
        return self.name


Resolution = FirstMatch | DeviceIndex | DeviceName


def parse_resolution(text: str) -> Resolution | None:
    if not text:
        return None
    if text == FIRST_MATCH_TOKEN:
        return FirstMatch()
    index = _parse_int(text)
    if index is not None:
        return DeviceIndex(index)
    return DeviceName(text)


@dataclass(frozen=True)
class DeviceRule:
    pattern: RuleName
    target: Resolution

    def match(self, identifier: str) -> Resolution | None:
        if self.pattern.match(identifier):
            return self.target
        return None

    @property
    def is_wildcard(self) -> bool:
        return isinstance(self.pattern, AnyName)

    def __str__(self) -> str:
        return f"alias {self.pattern} {self.target}"


def parse_rule_line(line: str) -> DeviceRule:
    """Parse an ``alias <from> <to>`` line into a rule."""
    elements = line.split()
    if len(elements) != 3 or elements[0] != "alias":
        raise RuleParseError(f"Invalid alias rule '{line.strip()}': expected 'alias <from> <to>'")

    pattern = parse_rule_name(elements[1])
    target = parse_resolution(elements[2])
    if target is None:
        raise RuleParseError(f"Invalid alias target in '{line.strip()}'")
    return DeviceRule(pattern=pattern, target=target)


class PowerLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def decay_steps(self) -> int:
        return {PowerLevel.LOW: 2, PowerLevel.MEDIUM: 4, PowerLevel.HIGH: 6}[self]


@dataclass(frozen=True)
class StopCommand:
    pass


@dataclass(frozen=True)
class ConnectCommand:
    target: Resolution


@dataclass(frozen=True)
class VibrateCommand:
    target: Resolution
    power: float


@dataclass(frozen=True)
class PulseCommand:
    target: Resolution
    level: PowerLevel


@dataclass(frozen=True)
class HeartbeatCommand:
    target: Resolution
    level: PowerLevel


AddressedCommand = ConnectCommand | VibrateCommand | PulseCommand | HeartbeatCommand
Command = StopCommand | AddressedCommand


@dataclass(frozen=True)
class Settings:
    host: str
    port: int
    path: str
    client_name: str
    message_version: int
    scan_seconds: float
    rules: tuple[DeviceRule, ...]

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}{self.path}"
