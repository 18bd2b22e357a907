"""Session translator: turns commands into protocol traffic and tracks session state.

Every state change happens under one ``asyncio.Lock``: command ingestion,
inbound message processing, waveform playback, the scan countdown and the
keep-alive ping all take it before touching the registry, the command queue,
the in-flight request cache, the scanning flag or the id counter.
Waveforms keep the lock while they sleep between steps.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from hapticctl.core.commands import parse_command
from hapticctl.core.errors import CommandParseError, SessionClosedError, UnexpectedAcknowledgementError
from hapticctl.core.model import (
    AddressedCommand,
    Command,
    ConnectCommand,
    Device,
    DeviceIndex,
    HeartbeatCommand,
    PulseCommand,
    Resolution,
    StopCommand,
    VibrateCommand,
)
from hapticctl.core.protocol import (
    DeviceAdded,
    DeviceList,
    DeviceRemoved,
    Error,
    FeatureSpeed,
    Ok,
    Ping,
    Request,
    RequestDeviceList,
    RequestServerInfo,
    Response,
    ScanningFinished,
    ServerInfo,
    StartScanning,
    StopAllDevices,
    StopScanning,
    UnknownMessage,
    VibrateCmd,
    decode_batch,
    encode_batch,
)
from hapticctl.core.resolver import DeviceResolver
from hapticctl.core.waveform import play_heartbeat, play_pulse

LOGGER = logging.getLogger(__name__)

DEFAULT_SCAN_SECONDS = 30.0
DEFAULT_MESSAGE_VERSION = 2
DEFAULT_CLIENT_NAME = "hapticctl"


class Translator:
    def __init__(
        self,
        resolver: DeviceResolver,
        *,
        client_name: str = DEFAULT_CLIENT_NAME,
        message_version: int = DEFAULT_MESSAGE_VERSION,
        scan_seconds: float = DEFAULT_SCAN_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.resolver = resolver
        self.client_name = client_name
        self.message_version = message_version
        self.scan_seconds = scan_seconds
        self.server_name: str | None = None
        self.max_ping_time = 0
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._outbound: asyncio.Queue[str | None] = asyncio.Queue()
        self._next_id = 1
        self._pending: dict[int, Request] = {}
        self._devices: dict[int, Device] = {}
        self._queued: list[AddressedCommand] = []
        self._scanning = False
        self._closed = False
        self._ready = asyncio.Event()
        self._scan_task: asyncio.Task[None] | None = None
        self._ping_task: asyncio.Task[None] | None = None

    @property
    def scanning(self) -> bool:
        return self._scanning

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def devices(self) -> dict[int, Device]:
        return dict(self._devices)

    @property
    def queued(self) -> tuple[AddressedCommand, ...]:
        return tuple(self._queued)

    @property
    def pending(self) -> dict[int, Request]:
        return dict(self._pending)

    async def messages(self) -> AsyncIterator[str]:
        """Serialized outbound batches, in send order, until shutdown."""
        while True:
            line = await self._outbound.get()
            if line is None:
                return
            yield line

    async def handshake(self) -> None:
        async with self._lock:
            if self._closed:
                LOGGER.debug("Session already shut down, skipping handshake")
                return
            self._send(
                RequestServerInfo(
                    id=self._allocate_id(),
                    message_version=self.message_version,
                    client_name=self.client_name,
                )
            )
            self._send(RequestDeviceList(id=self._allocate_id()))
            self._scan()
            self._ready.set()

    async def wait_until_ready(self) -> None:
        """Block until the handshake has been sent or the session is shut down."""
        await self._ready.wait()

    async def handle_command(self, line: str) -> Command | None:
        """Parse and run one command line.

        Malformed lines are logged and dropped without touching session state.
        Returns the parsed command, or None when nothing was run.
        """
        try:
            command = parse_command(line, self.resolver)
        except CommandParseError as exc:
            LOGGER.warning("%s", exc)
            return None
        if command is None:
            return None

        async with self._lock:
            self._ensure_open()
            if isinstance(command, StopCommand):
                self._stop_all()
            else:
                await self._run(command)
        return command

    async def process(self, line: str) -> None:
        """Handle one inbound batch, message by message in array order."""
        messages = decode_batch(line)
        async with self._lock:
            for message in messages:
                await self._handle(message)

    async def stop_scanning(self) -> None:
        async with self._lock:
            if self._scan_task is not None and self._scan_task is not asyncio.current_task():
                self._scan_task.cancel()
            self._scan_task = None
            if self._closed:
                return
            self._send(StopScanning(id=self._allocate_id()))

    async def shutdown(self) -> None:
        """Discard queued commands, stop every device and end the outbound stream."""
        async with self._lock:
            if self._closed:
                return
            for task in (self._scan_task, self._ping_task):
                if task is not None:
                    task.cancel()
            self._scan_task = None
            self._ping_task = None
            self._stop_all()
            self._closed = True
            self._outbound.put_nowait(None)
            self._ready.set()

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Session has been shut down")

    def _allocate_id(self) -> int:
        message_id = self._next_id
        self._next_id += 1
        return message_id

    def _send(self, *requests: Request) -> None:
        for request in requests:
            self._pending[request.id] = request
        line = encode_batch(list(requests))
        LOGGER.debug("-> %s", line)
        self._outbound.put_nowait(line)

    def _stop_all(self) -> None:
        LOGGER.info("Stopping all devices")
        self._send(StopAllDevices(id=self._allocate_id()))
        if self._queued:
            LOGGER.info("Discarding %d queued command(s)", len(self._queued))
        self._queued.clear()

    def _find_device(self, target: Resolution) -> Device | None:
        if isinstance(target, DeviceIndex):
            return self._devices.get(target.index)
        for index in sorted(self._devices):
            device = self._devices[index]
            if target.matches(device):
                return device
        return None

    async def _run(self, command: AddressedCommand) -> None:
        device = self._find_device(command.target)
        if device is not None:
            await self._execute(command, device)
            return

        LOGGER.info("Device %s not connected, queueing command and scanning", command.target)
        self._queued.append(command)
        self._scan()

    async def _execute(self, command: AddressedCommand, device: Device) -> None:
        if isinstance(command, ConnectCommand):
            LOGGER.info("Device %d (%s) is connected", device.index, device.name)
        elif isinstance(command, VibrateCommand):
            self._vibrate(device, command.power)
        elif isinstance(command, PulseCommand):
            await play_pulse(self._emitter(device), self._sleep, command.level)
        elif isinstance(command, HeartbeatCommand):
            await play_heartbeat(self._emitter(device), self._sleep, command.level)
        else:
            raise AssertionError(f"Unhandled command {command!r}")

    def _vibrate(self, device: Device, power: float) -> None:
        features = device.vibration_features()
        speeds = tuple(FeatureSpeed(index=i, speed=power) for i in range(features))
        self._send(VibrateCmd(id=self._allocate_id(), device_index=device.index, speeds=speeds))

    def _emitter(self, device: Device) -> Callable[[float], Awaitable[None]]:
        async def emit(intensity: float) -> None:
            self._vibrate(device, intensity)

        return emit

    def _scan(self) -> None:
        if self._scanning or self._closed:
            return
        self._scanning = True
        self._send(StartScanning(id=self._allocate_id()))
        self._scan_task = asyncio.create_task(self._scan_countdown())

    async def _scan_countdown(self) -> None:
        await asyncio.sleep(self.scan_seconds)
        await self.stop_scanning()

    async def _keep_alive(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            async with self._lock:
                if self._closed:
                    return
                self._send(Ping(id=self._allocate_id()))

    def _discharge(self, message_id: int) -> Request:
        request = self._pending.pop(message_id, None)
        if request is None:
            raise UnexpectedAcknowledgementError(
                f"Acknowledgement for request id {message_id} which is not in flight"
            )

        if isinstance(request, StopScanning):
            self._scanning = False
            if self._queued:
                LOGGER.info("Unable to discover all devices, starting new scan")
                self._scan()
        return request

    async def _register(self, device: Device) -> None:
        self._devices[device.index] = device
        ready = [command for command in self._queued if command.target.matches(device)]
        if not ready:
            return

        LOGGER.info(
            "Connected to device %d (%s), issuing %d cached command(s)",
            device.index,
            device.name,
            len(ready),
        )
        self._queued = [command for command in self._queued if not command.target.matches(device)]
        for command in ready:
            await self._execute(command, device)

    async def _handle(self, message: Response) -> None:
        LOGGER.debug("<- %r", message)
        if isinstance(message, DeviceRemoved):
            LOGGER.info("Device %d disconnected", message.device_index)
            self._devices.pop(message.device_index, None)
        elif isinstance(message, DeviceAdded):
            self._send(RequestDeviceList(id=self._allocate_id()))
        elif isinstance(message, DeviceList):
            if message.id in self._pending:
                self._discharge(message.id)
            for device in message.devices:
                await self._register(device)
        elif isinstance(message, ServerInfo):
            self._discharge(message.id)
            self._on_server_info(message)
        elif isinstance(message, Ok):
            self._discharge(message.id)
        elif isinstance(message, Error):
            LOGGER.error("Server error %s for request %d: %s", message.code, message.id, message.message)
            if message.id in self._pending:
                self._discharge(message.id)
        elif isinstance(message, (ScanningFinished, UnknownMessage)):
            LOGGER.info("Unhandled message: %r", message)
        else:
            raise AssertionError(f"Unhandled message type {message!r}")

    def _on_server_info(self, message: ServerInfo) -> None:
        self.server_name = message.server_name
        self.max_ping_time = message.max_ping_time
        LOGGER.info(
            "Connected to server %s (message version %d)",
            message.server_name or "<unnamed>",
            message.message_version,
        )
        if message.max_ping_time > 0 and self._ping_task is None:
            interval = message.max_ping_time / 1000 / 2
            self._ping_task = asyncio.create_task(self._keep_alive(interval))
