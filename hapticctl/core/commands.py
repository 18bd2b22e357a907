"""Command-line grammar: one command per line."""

from __future__ import annotations

from hapticctl.core.errors import CommandParseError
from hapticctl.core.model import (
    Command,
    ConnectCommand,
    HeartbeatCommand,
    PowerLevel,
    PulseCommand,
    Resolution,
    StopCommand,
    VibrateCommand,
)
from hapticctl.core.resolver import DeviceResolver

_LEVELS = ", ".join(level.value for level in PowerLevel)


def _expect_args(elements: list[str], count: int, usage: str) -> None:
    if len(elements) != count + 1:
        raise CommandParseError(f"Invalid arguments for {elements[0]}, expected: {usage}")


def _target(resolver: DeviceResolver, token: str) -> Resolution:
    target = resolver.resolve(token)
    if target is None:
        raise CommandParseError(f"Could not resolve device '{token}'")
    return target


def _power(token: str) -> float:
    try:
        power = float(token)
    except ValueError:
        raise CommandParseError(f"Invalid power '{token}', expected a number between 0.0 and 1.0") from None
    if not 0.0 <= power <= 1.0:
        raise CommandParseError(f"Power {power} out of range, expected 0.0 to 1.0")
    return power


def _level(token: str) -> PowerLevel:
    try:
        return PowerLevel(token)
    except ValueError:
        raise CommandParseError(f"Invalid power level '{token}', expected one of {_LEVELS}") from None


def parse_command(line: str, resolver: DeviceResolver) -> Command | None:
    """Parse one command line. Returns None for a blank line."""
    elements = line.split()
    if not elements:
        return None

    keyword = elements[0]
    if keyword == "STOP":
        _expect_args(elements, 0, "STOP")
        return StopCommand()
    if keyword == "CONNECT":
        _expect_args(elements, 1, "CONNECT <device>")
        return ConnectCommand(target=_target(resolver, elements[1]))
    if keyword == "VIBRATE":
        _expect_args(elements, 2, "VIBRATE <device> <power>")
        power = _power(elements[2])
        return VibrateCommand(target=_target(resolver, elements[1]), power=power)
    if keyword == "PULSE":
        _expect_args(elements, 2, f"PULSE <device> <{_LEVELS}>")
        level = _level(elements[2])
        return PulseCommand(target=_target(resolver, elements[1]), level=level)
    if keyword == "HEARTBEAT":
        _expect_args(elements, 2, f"HEARTBEAT <device> <{_LEVELS}>")
        level = _level(elements[2])
        return HeartbeatCommand(target=_target(resolver, elements[1]), level=level)

    raise CommandParseError(f"Unknown command '{keyword}'")
