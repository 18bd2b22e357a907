"""Timed vibration waveforms: pulse and heartbeat."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from hapticctl.core.model import PowerLevel

PULSE_SECONDS = 0.480
HEARTBEAT_PAUSE_SECONDS = 0.050
HEARTBEAT_OFFSET = 0.05
STEP_INTENSITY = 0.10

Emit = Callable[[float], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


def pulse_intensities(level: PowerLevel, offset: float = 0.0) -> list[float]:
    """Decaying intensities for one pulse, without the closing zero."""
    steps = level.decay_steps
    return [round((steps - i) * STEP_INTENSITY + offset, 2) for i in range(steps)]


async def play_pulse(emit: Emit, sleep: Sleep, level: PowerLevel, offset: float = 0.0) -> None:
    intensities = pulse_intensities(level, offset)
    step_seconds = PULSE_SECONDS / len(intensities)
    for intensity in intensities:
        await emit(intensity)
        await sleep(step_seconds)
    # motor back to rest
    await emit(0.0)


async def play_heartbeat(emit: Emit, sleep: Sleep, level: PowerLevel) -> None:
    await play_pulse(emit, sleep, level, offset=HEARTBEAT_OFFSET)
    await sleep(HEARTBEAT_PAUSE_SECONDS)
    await play_pulse(emit, sleep, level)
