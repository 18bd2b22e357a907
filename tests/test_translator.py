from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from hapticctl.core.errors import CapabilityError, SessionClosedError, UnexpectedAcknowledgementError
from hapticctl.core.model import DeviceIndex, DeviceRule, FirstMatch, LiteralName, VibrateCommand
from hapticctl.core.resolver import DeviceResolver
from hapticctl.core.translator import Translator


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class OutboundCollector:
    """Consumes the outbound stream in the background so tests can inspect it."""

    def __init__(self, translator: Translator) -> None:
        self.lines: list[str] = []
        self.task = asyncio.create_task(self._collect(translator))

    async def _collect(self, translator: Translator) -> None:
        async for line in translator.messages():
            self.lines.append(line)

    async def drain(self) -> list[dict[str, Any]]:
        for _ in range(3):
            await asyncio.sleep(0)
        messages = [message for line in self.lines for message in json.loads(line)]
        self.lines.clear()
        return messages


_COLLECTORS: dict[Translator, OutboundCollector] = {}


def _translator(
    *rules: DeviceRule, sleep: Any = None, scan_seconds: float = 3600.0, collect: bool = True
) -> Translator:
    translator = Translator(
        DeviceResolver(rules),
        client_name="test-client",
        scan_seconds=scan_seconds,
        sleep=sleep or FakeSleep(),
    )
    if collect:
        _COLLECTORS[translator] = OutboundCollector(translator)
    return translator


async def _drain(translator: Translator) -> list[dict[str, Any]]:
    return await _COLLECTORS[translator].drain()


def _kinds(messages: list[dict[str, Any]]) -> list[str]:
    return [next(iter(message)) for message in messages]


def _speeds(messages: list[dict[str, Any]]) -> list[float]:
    return [m["VibrateCmd"]["Speeds"][0]["Speed"] for m in messages if "VibrateCmd" in m]


def _device(index: int, name: str, features: int | None = 1) -> dict[str, Any]:
    device_messages: dict[str, Any] = {"StopDeviceCmd": {}}
    if features is not None:
        device_messages["VibrateCmd"] = {"FeatureCount": features}
    return {"DeviceIndex": index, "DeviceName": name, "DeviceMessages": device_messages}


def _device_list(*devices: dict[str, Any], message_id: int = 0) -> str:
    return json.dumps([{"DeviceList": {"Id": message_id, "Devices": list(devices)}}])


def _ok(message_id: int) -> str:
    return json.dumps([{"Ok": {"Id": message_id}}])


def test_handshake_sequence() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handshake()
        assert await _drain(translator) == [
            {"RequestServerInfo": {"Id": 1, "MessageVersion": 2, "ClientName": "test-client"}},
            {"RequestDeviceList": {"Id": 2}},
            {"StartScanning": {"Id": 3}},
        ]
        assert translator.scanning

        await translator.process(
            json.dumps([{"ServerInfo": {"Id": 1, "MessageVersion": 2, "MaxPingTime": 0, "ServerName": "Intiface"}}])
        )
        await translator.process(_device_list(_device(0, "Hush"), message_id=2))
        assert set(translator.pending) == {3}
        assert translator.server_name == "Intiface"
        assert list(translator.devices) == [0]
        await translator.shutdown()

    asyncio.run(scenario())


def test_vibrate_unknown_device_is_queued_until_listed() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handle_command("VIBRATE 5 0.5")

        sent = await _drain(translator)
        assert _kinds(sent) == ["StartScanning"]
        assert translator.queued == (VibrateCommand(target=DeviceIndex(5), power=0.5),)

        await translator.process(_device_list(_device(5, "Edge")))
        assert await _drain(translator) == [
            {"VibrateCmd": {"Id": 2, "DeviceIndex": 5, "Speeds": [{"Index": 0, "Speed": 0.5}]}}
        ]
        assert translator.queued == ()
        await translator.shutdown()

    asyncio.run(scenario())


def test_known_device_runs_immediately_with_feature_fan_out() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.process(_device_list(_device(1, "Edge", features=2)))
        await translator.handle_command("VIBRATE 1 0.75")

        assert await _drain(translator) == [
            {
                "VibrateCmd": {
                    "Id": 1,
                    "DeviceIndex": 1,
                    "Speeds": [{"Index": 0, "Speed": 0.75}, {"Index": 1, "Speed": 0.75}],
                }
            }
        ]
        assert not translator.scanning
        assert 1 in translator.pending
        await translator.shutdown()

    asyncio.run(scenario())


def test_scan_trigger_is_idempotent() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handle_command("VIBRATE 5 0.5")
        await translator.handle_command("CONNECT 6")
        await translator.handle_command("PULSE 7 LOW")

        assert _kinds(await _drain(translator)) == ["StartScanning"]
        assert len(translator.queued) == 3
        await translator.shutdown()

    asyncio.run(scenario())


def test_stop_scanning_ack_rescans_while_queue_not_empty() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handle_command("VIBRATE 5 0.5")
        await translator.process(_ok(1))
        assert translator.scanning

        await translator.stop_scanning()
        assert _kinds(await _drain(translator)) == ["StartScanning", "StopScanning"]

        await translator.process(_ok(2))
        assert await _drain(translator) == [{"StartScanning": {"Id": 3}}]
        assert translator.scanning
        await translator.shutdown()

    asyncio.run(scenario())


def test_stop_scanning_ack_with_empty_queue_goes_idle() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handshake()
        await translator.stop_scanning()
        await _drain(translator)

        await translator.process(_ok(4))
        assert not translator.scanning
        assert await _drain(translator) == []
        await translator.shutdown()

    asyncio.run(scenario())


def test_scan_countdown_sends_stop_scanning() -> None:
    async def scenario() -> None:
        translator = _translator(scan_seconds=0.01)
        await translator.handle_command("CONNECT 2")
        await asyncio.sleep(0.05)

        assert _kinds(await _drain(translator)) == ["StartScanning", "StopScanning"]
        await translator.shutdown()

    asyncio.run(scenario())


def test_scan_countdown_waits_for_running_waveform() -> None:
    async def scenario() -> None:
        translator = _translator(sleep=asyncio.sleep, scan_seconds=0.01)
        await translator.process(_device_list(_device(0, "Hush")))
        await translator.handle_command("CONNECT 9")
        await translator.handle_command("PULSE 0 LOW")
        await asyncio.sleep(0.05)

        assert _kinds(await _drain(translator)) == [
            "StartScanning",
            "VibrateCmd",
            "VibrateCmd",
            "VibrateCmd",
            "StopScanning",
        ]
        await translator.shutdown()

    asyncio.run(scenario())


def test_stop_sends_stop_all_and_clears_queue() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handle_command("VIBRATE 5 0.5")
        await translator.handle_command("HEARTBEAT 6 HIGH")
        await translator.handle_command("STOP")

        assert await _drain(translator) == [{"StartScanning": {"Id": 1}}, {"StopAllDevices": {"Id": 2}}]
        assert translator.queued == ()
        assert translator.scanning
        await translator.shutdown()

    asyncio.run(scenario())


def test_stop_when_idle() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handle_command("STOP")
        assert await _drain(translator) == [{"StopAllDevices": {"Id": 1}}]
        await translator.shutdown()

    asyncio.run(scenario())


def test_pulse_low_and_high_waveforms() -> None:
    async def scenario() -> None:
        sleep = FakeSleep()
        translator = _translator(sleep=sleep)
        await translator.process(_device_list(_device(0, "Hush")))

        await translator.handle_command("PULSE 0 LOW")
        assert _speeds(await _drain(translator)) == [0.2, 0.1, 0.0]
        assert sleep.calls == pytest.approx([0.24, 0.24])

        await translator.handle_command("PULSE 0 HIGH")
        assert _speeds(await _drain(translator)) == [0.6, 0.5, 0.4, 0.3, 0.2, 0.1, 0.0]
        await translator.shutdown()

    asyncio.run(scenario())


def test_heartbeat_queued_then_played() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handle_command("HEARTBEAT 3 LOW")
        await _drain(translator)

        await translator.process(_device_list(_device(3, "Lush")))
        assert _speeds(await _drain(translator)) == [0.25, 0.15, 0.0, 0.2, 0.1, 0.0]
        await translator.shutdown()

    asyncio.run(scenario())


def test_queue_flushes_by_address_in_insertion_order() -> None:
    async def scenario() -> None:
        translator = _translator(DeviceRule(pattern=LiteralName("left"), target=DeviceIndex(4)))
        await translator.handle_command("VIBRATE hush 0.3")
        await translator.handle_command("VIBRATE left 0.1")
        await translator.handle_command("VIBRATE @1 0.9")
        await translator.handle_command("VIBRATE left 0.2")
        await _drain(translator)

        await translator.process(_device_list(_device(4, "Edge")))
        sent = await _drain(translator)
        assert [m["VibrateCmd"]["DeviceIndex"] for m in sent] == [4, 4, 4]
        assert _speeds(sent) == [0.1, 0.9, 0.2]
        assert len(translator.queued) == 1

        await translator.process(_device_list(_device(2, "Hush")))
        sent = await _drain(translator)
        assert [m["VibrateCmd"]["DeviceIndex"] for m in sent] == [2]
        assert translator.queued == ()
        await translator.shutdown()

    asyncio.run(scenario())


def test_first_match_picks_lowest_index() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.process(_device_list(_device(7, "B"), _device(3, "A")))
        await translator.handle_command("VIBRATE @1 0.4")
        (message,) = await _drain(translator)
        assert message["VibrateCmd"]["DeviceIndex"] == 3
        await translator.shutdown()

    asyncio.run(scenario())


def test_device_added_requests_list_and_removed_forgets() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.process(json.dumps([{"DeviceAdded": {"Id": 0, "DeviceIndex": 1, "DeviceName": "Hush"}}]))
        assert await _drain(translator) == [{"RequestDeviceList": {"Id": 1}}]

        await translator.process(_device_list(_device(1, "Hush"), message_id=1))
        assert list(translator.devices) == [1]
        assert translator.pending == {}

        await translator.process(json.dumps([{"DeviceRemoved": {"Id": 0, "DeviceIndex": 1}}]))
        assert translator.devices == {}

        await translator.handle_command("VIBRATE 1 0.5")
        assert _kinds(await _drain(translator)) == ["StartScanning"]
        assert len(translator.queued) == 1
        await translator.shutdown()

    asyncio.run(scenario())


def test_unknown_acknowledgement_is_fatal() -> None:
    async def scenario() -> None:
        translator = _translator()
        with pytest.raises(UnexpectedAcknowledgementError):
            await translator.process(_ok(42))
        await translator.shutdown()

    asyncio.run(scenario())


def test_acknowledgement_ids_are_discharged_once() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handle_command("STOP")
        await translator.process(_ok(1))
        assert translator.pending == {}
        with pytest.raises(UnexpectedAcknowledgementError):
            await translator.process(_ok(1))
        await translator.shutdown()

    asyncio.run(scenario())


def test_vibrate_without_capability_fails_loudly() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.process(_device_list(_device(0, "Stroker", features=None)))
        with pytest.raises(CapabilityError):
            await translator.handle_command("VIBRATE 0 0.5")
        await translator.shutdown()

    asyncio.run(scenario())


@pytest.mark.parametrize("line", ["JUMP 1", "VIBRATE 5", "VIBRATE 5 2.0", "PULSE 1 EXTREME", ""])
def test_malformed_command_has_no_effect(line: str) -> None:
    async def scenario() -> None:
        translator = _translator()
        assert await translator.handle_command(line) is None
        assert await _drain(translator) == []
        assert translator.queued == ()
        assert not translator.scanning
        await translator.shutdown()

    asyncio.run(scenario())


def test_unhandled_and_error_messages_are_not_fatal() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handle_command("STOP")
        await translator.process(
            json.dumps(
                [
                    {"ScanningFinished": {"Id": 0}},
                    {"RawReading": {"Id": 0, "Data": []}},
                    {"Error": {"Id": 1, "ErrorMessage": "Device not ready", "ErrorCode": 4}},
                    {"Error": {"Id": 0, "ErrorMessage": "Ping timeout", "ErrorCode": 2}},
                ]
            )
        )
        assert translator.pending == {}
        await translator.shutdown()

    asyncio.run(scenario())


def test_ids_increase_and_are_never_reused() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.process(_device_list(_device(0, "Hush")))
        await translator.handle_command("VIBRATE 0 0.1")
        await translator.process(_ok(1))
        await translator.handle_command("VIBRATE 0 0.2")
        await translator.handle_command("STOP")

        ids = [next(iter(m.values()))["Id"] for m in await _drain(translator)]
        assert ids == [1, 2, 3]
        await translator.shutdown()

    asyncio.run(scenario())


def test_keep_alive_pings_when_server_requires_it() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handshake()
        await translator.process(
            json.dumps([{"ServerInfo": {"Id": 1, "MessageVersion": 2, "MaxPingTime": 20}}])
        )
        await asyncio.sleep(0.05)
        await translator.shutdown()

        assert "Ping" in _kinds(await _drain(translator))

    asyncio.run(scenario())


def test_shutdown_stops_devices_and_ends_stream() -> None:
    async def scenario() -> None:
        translator = _translator(collect=False)
        await translator.handle_command("CONNECT @1")
        await translator.shutdown()
        await translator.shutdown()

        lines = [line async for line in translator.messages()]
        assert [json.loads(line) for line in lines] == [
            [{"StartScanning": {"Id": 1}}],
            [{"StopAllDevices": {"Id": 2}}],
        ]
        assert translator.queued == ()
        assert translator.closed
        with pytest.raises(SessionClosedError):
            await translator.handle_command("STOP")

    asyncio.run(scenario())


def test_handshake_after_shutdown_is_skipped() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.shutdown()
        await translator.handshake()
        await asyncio.wait_for(translator.wait_until_ready(), timeout=1)

        assert await _drain(translator) == [{"StopAllDevices": {"Id": 1}}]
        assert set(translator.pending) == {1}

    asyncio.run(scenario())


def test_wait_until_ready_releases_after_handshake() -> None:
    async def scenario() -> None:
        translator = _translator()
        waiter = asyncio.create_task(translator.wait_until_ready())
        await asyncio.sleep(0)
        assert not waiter.done()

        await translator.handshake()
        await asyncio.wait_for(waiter, timeout=1)
        await translator.shutdown()

    asyncio.run(scenario())


def test_first_match_target_queues_without_devices() -> None:
    async def scenario() -> None:
        translator = _translator()
        await translator.handle_command("CONNECT @1")
        assert translator.queued[0].target == FirstMatch()
        await translator.process(_device_list(_device(5, "Any")))
        assert translator.queued == ()
        await translator.shutdown()

    asyncio.run(scenario())
