"""
command_channel.py

Transport boundary for device commands.

`send_command(device_id, command)` is fire-and-forget and at-least-once from
the engine's point of view: True means the bus accepted the command, not that
the device applied it. A rejected command raises `ActionExecutionError`; a
dead bus raises `UpstreamUnavailableError`.
"""
from __future__ import annotations

import threading
from collections import deque
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from homegrid.errors import ActionExecutionError, UpstreamUnavailableError
from homegrid.logging_config import logger


class CommandChannel:
    def send_command(self, device_id: Optional[int], command: Dict[str, Any]) -> bool:
        raise NotImplementedError


class RecordingCommandChannel(CommandChannel):
    """
    In-process channel that records every accepted command.

    `rejected_devices` simulates devices that refuse commands;
    `available=False` simulates a bus outage.
    """

    def __init__(self, rejected_devices: Iterable[int] = (), history: int = 500):
        self.rejected_devices = set(rejected_devices)
        self.available = True
        self.sent: deque = deque(maxlen=history)
        self._lock = threading.Lock()

    def send_command(self, device_id: Optional[int], command: Dict[str, Any]) -> bool:
        if not self.available:
            raise UpstreamUnavailableError("command bus", "not connected")
        if device_id is not None and device_id in self.rejected_devices:
            raise ActionExecutionError(device_id, f"device {device_id} rejected command {command.get('command', '?')}")

        with self._lock:
            self.sent.append({"ts": datetime.now().isoformat(), "device_id": device_id, "command": dict(command)})
        logger.debug("Command sent to device %s: %s", device_id, command)
        return True

    def commands_for(self, device_id: Optional[int]) -> List[Dict[str, Any]]:
        with self._lock:
            return [c["command"] for c in self.sent if c["device_id"] == device_id]
