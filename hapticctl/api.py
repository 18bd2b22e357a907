"""Stable public API for building tooling on top of hapticctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

from hapticctl.core.errors import (
    CapabilityError,
    CommandParseError,
    ConfigLoadError,
    ConfigValidationError,
    HapticError,
    ProtocolError,
    RuleParseError,
    SessionClosedError,
    TransportClosedError,
    TransportConnectError,
    TransportError,
    UnexpectedAcknowledgementError,
)
from hapticctl.core.model import (
    Device,
    DeviceIndex,
    DeviceName,
    DeviceRule,
    FirstMatch,
    PowerLevel,
    Resolution,
    Settings,
)
from hapticctl.core.service import HapticService
from hapticctl.core.translator import Translator
from hapticctl.transports.base import Transport

__all__ = [
    "HapticError",
    "CapabilityError",
    "CommandParseError",
    "ConfigLoadError",
    "ConfigValidationError",
    "ProtocolError",
    "RuleParseError",
    "SessionClosedError",
    "TransportError",
    "TransportConnectError",
    "TransportClosedError",
    "UnexpectedAcknowledgementError",
    "Device",
    "DeviceIndex",
    "DeviceName",
    "DeviceRule",
    "FirstMatch",
    "PowerLevel",
    "Resolution",
    "Settings",
    "Translator",
    "Client",
]


class Client:
    """Public client for interacting with hapticctl core capabilities.

    A `Client` instance wraps settings loading, alias resolution, and session
    driving behind a stable API intended for third-party tools
    (GUI/TUI/services/scripts).
    """

    def __init__(
        self,
        *,
        config_path: Path | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._service = HapticService(config_path=config_path, transport=transport)

    @property
    def settings(self) -> Settings:
        return self._service.settings

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_rules(self) -> list[DeviceRule]:
        return self._service.list_rules()

    def resolve(self, identifier: str) -> Resolution | None:
        return self._service.resolve(identifier)

    def new_session(self) -> Translator:
        return self._service.build_translator()

    async def run(self, lines: AsyncIterator[str], translator: Translator | None = None) -> None:
        await self._service.run(lines, translator)
