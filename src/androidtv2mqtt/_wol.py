"""Wake-on-LAN port and adapter.

The session only needs to know whether the magic packet went out;
delivery to a sleeping TV is never confirmed by the protocol.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import wakeonlan

logger = logging.getLogger(__name__)


@runtime_checkable
class WakeOnLanPort(Protocol):
    """Sends a magic packet and reports whether it was sent."""

    async def send_magic_packet(self, mac: str) -> bool: ...


@dataclass(slots=True)
class MagicPacketSender:
    """``wakeonlan``-backed adapter.

    The library sends over a blocking UDP socket, so the call runs in a
    worker thread.

    Args:
        broadcast: Destination address of the packet.
        port: Destination UDP port.
    """

    broadcast: str = "255.255.255.255"
    port: int = 9

    async def send_magic_packet(self, mac: str) -> bool:
        if not mac:
            logger.error("Cannot send wake-on-LAN packet: no MAC address configured")
            return False
        try:
            await asyncio.to_thread(
                wakeonlan.send_magic_packet,
                mac,
                ip_address=self.broadcast,
                port=self.port,
            )
        except (OSError, ValueError) as exc:
            logger.error("Wake-on-LAN to %s failed: %s", mac, exc)
            return False
        logger.debug("Wake-on-LAN packet sent to %s", mac)
        return True
