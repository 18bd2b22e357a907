"""Service layer used by CLI and future UI frontends."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import replace
from pathlib import Path

from hapticctl.core.config_loader import load_settings
from hapticctl.core.errors import SessionClosedError
from hapticctl.core.model import DeviceRule, Resolution, Settings
from hapticctl.core.resolver import DeviceResolver
from hapticctl.core.translator import Translator
from hapticctl.transports.base import Transport
from hapticctl.transports.websocket import WebSocketTransport

LOGGER = logging.getLogger(__name__)


class HapticService:
    def __init__(
        self,
        *,
        config_path: Path | None = None,
        host: str | None = None,
        port: int | None = None,
        transport: Transport | None = None,
    ) -> None:
        loaded = load_settings(config_path)
        settings = loaded.settings
        if host is not None:
            settings = replace(settings, host=host)
        if port is not None:
            settings = replace(settings, port=port)
        self.settings: Settings = settings
        self.load_warnings = loaded.warnings
        self.resolver = DeviceResolver(settings.rules)
        self.transport = transport or WebSocketTransport(settings.url)

    def list_rules(self) -> list[DeviceRule]:
        return list(self.resolver.rules)

    def resolve(self, identifier: str) -> Resolution | None:
        return self.resolver.resolve(identifier)

    def build_translator(self) -> Translator:
        return Translator(
            self.resolver,
            client_name=self.settings.client_name,
            message_version=self.settings.message_version,
            scan_seconds=self.settings.scan_seconds,
        )

    async def run(self, lines: AsyncIterator[str], translator: Translator | None = None) -> None:
        """Drive one session until the command source or the connection ends.

        When the command source is exhausted the session is shut down and the
        final StopAllDevices is flushed before returning.
        """
        translator = translator or self.build_translator()
        session = asyncio.create_task(self.transport.run(translator))
        commands = asyncio.create_task(_pump_commands(lines, translator))

        try:
            done, _ = await asyncio.wait({session, commands}, return_when=asyncio.FIRST_COMPLETED)
            if session in done:
                commands.cancel()
                await asyncio.gather(commands, return_exceptions=True)
                session.result()
                return

            commands.result()
            await translator.shutdown()
            await session
        finally:
            for task in (session, commands):
                if not task.done():
                    task.cancel()


async def _pump_commands(lines: AsyncIterator[str], translator: Translator) -> None:
    # commands may only follow RequestServerInfo and RequestDeviceList on the wire
    await translator.wait_until_ready()
    async for line in lines:
        try:
            await translator.handle_command(line)
        except SessionClosedError:
            LOGGER.warning("Session closed, ignoring command '%s'", line.strip())
            return
