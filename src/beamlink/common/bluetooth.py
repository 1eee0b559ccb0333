"""
Bluetooth device registry

Holds the devices currently known to whatever scanner the host provides
(BlueZ, a platform API, or a user-supplied address). Sessions only read
the latest snapshot; no connect step is needed before an RFCOMM session.
"""
import logging
from dataclasses import dataclass
from typing import Tuple

from beamlink.common.state import StateFlow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BluetoothDevice:
    address: str  # "AA:BB:CC:DD:EE:FF"
    name: str = ""


class BluetoothDeviceRegistry:
    """Most-recent-value list of discovered Bluetooth devices"""

    def __init__(self):
        self.devices: StateFlow[Tuple[BluetoothDevice, ...]] = StateFlow(())

    def start_discovery(self) -> None:
        """Forget previous results before a new scan"""
        self.devices.set(())
        logger.debug("Bluetooth device list cleared for new discovery")

    def add_device(self, device: BluetoothDevice) -> None:
        def _add(devices):
            if any(d.address == device.address for d in devices):
                return devices
            return devices + (device,)

        self.devices.update(_add)
        logger.info(f"Bluetooth device found: {device.name or '?'} ({device.address})")

    def remove_device(self, address: str) -> None:
        self.devices.update(lambda devices: tuple(d for d in devices if d.address != address))

    def first(self):
        devices = self.devices.value
        return devices[0] if devices else None
