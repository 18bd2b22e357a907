"""Transport interfaces."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from hapticctl.core.translator import Translator


class Transport(Protocol):
    async def run(self, translator: Translator) -> None:
        """Carry a translator's traffic until either direction ends."""
