"""BLE advertisement source backed by bleak."""

import logging
from typing import Optional

from bleak import BleakScanner
from bleak.assigned_numbers import AdvertisementDataType
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from .constants import DEFAULT_SCANNING_MODE, MANUFACTURER_ID
from .listener import EmitCallback
from .models import RawAdvertisement, utc_now


class BleakAdvertisementSource:
    """Scans for Ruuvi manufacturer data using bleak.

    Only advertisements that carry manufacturer data for Ruuvi's company ID
    are passed on.
    """

    def __init__(
        self,
        adapter: Optional[str] = None,
        scanning_mode: str = DEFAULT_SCANNING_MODE,
        allow_duplicates: bool = False,
        logger: Optional[logging.Logger] = None
    ):
        if scanning_mode not in ('active', 'passive'):
            raise ValueError(f"Unsupported scanning mode: {scanning_mode}")

        self.adapter = adapter
        self.scanning_mode = scanning_mode
        self.allow_duplicates = allow_duplicates
        self.logger = logger or logging.getLogger(__name__)

        self._scanner: Optional[BleakScanner] = None
        self._emit: Optional[EmitCallback] = None

    def _detection_callback(self, device: BLEDevice, advertisement: AdvertisementData) -> None:
        """Handle a BLE advertisement."""
        if self._emit is None:
            return

        payload = advertisement.manufacturer_data.get(MANUFACTURER_ID)
        if payload is None:
            self.logger.debug(f"Ignoring device {device.address}: not a Ruuvi device")
            return

        self._emit(RawAdvertisement(
            address=device.address,
            payload=bytes(payload),
            signal_strength=advertisement.rssi,
            timestamp=utc_now()
        ))

    async def start(self, emit: EmitCallback) -> None:
        """Start scanning and deliver advertisements to emit."""
        self._emit = emit

        # BlueZ-specific options (Linux/Raspberry Pi); ignored by other backends
        kwargs = {}
        if self.adapter:
            kwargs['adapter'] = self.adapter
            self.logger.info(f"Using Bluetooth adapter: {self.adapter}")

        bluez = {'filters': {'DuplicateData': self.allow_duplicates}}
        if self.scanning_mode == 'passive':
            # BlueZ only scans passively through an advertisement monitor
            bluez['or_patterns'] = [
                (0, AdvertisementDataType.MANUFACTURER_SPECIFIC_DATA, MANUFACTURER_ID.to_bytes(2, 'little'))
            ]

        self._scanner = BleakScanner(
            detection_callback=self._detection_callback,
            scanning_mode=self.scanning_mode,
            bluez=bluez,
            **kwargs
        )

        self.logger.info(f"Starting continuous BLE scanning (mode: {self.scanning_mode})")
        await self._scanner.start()

    async def stop(self) -> None:
        """Stop scanning."""
        self._emit = None
        if self._scanner is not None:
            try:
                await self._scanner.stop()
            finally:
                self._scanner = None
                self.logger.info("BLE scanning stopped")
