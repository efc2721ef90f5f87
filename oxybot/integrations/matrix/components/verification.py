"""
Matrix Device Verification

Auto-accepts SAS (emoji) verification started from the bot account's other
devices. The callbacks run from nio's to-device dispatch during a sync, so
failures are logged here and never reach the sync loop.
"""

import logging
from typing import Optional

from nio import (
    AsyncClient,
    KeyVerificationCancel,
    KeyVerificationEvent,
    KeyVerificationKey,
    KeyVerificationMac,
    KeyVerificationStart,
    ToDeviceError,
)
from nio.crypto import ENCRYPTION_ENABLED

logger = logging.getLogger(__name__)


class MatrixVerificationHandler:
    """Handles the to-device side of interactive verification."""

    def __init__(
        self,
        client: AsyncClient,
        app_logger: Optional[logging.Logger] = None,
        encryption_enabled: bool = ENCRYPTION_ENABLED,
    ):
        self.client = client
        self.logger = app_logger or logger
        self.encryption_enabled = encryption_enabled
        self.verified_devices = []

    def register(self) -> bool:
        """Register the to-device callback. Returns False without E2EE support."""
        if not self.encryption_enabled:
            self.logger.warning(
                "E2EE support is not installed (matrix-nio[e2e]); device verification is disabled"
            )
            return False

        self.client.add_to_device_callback(self.on_key_verification, (KeyVerificationEvent,))
        self.logger.debug("Device verification callbacks registered")
        return True

    async def on_key_verification(self, event: KeyVerificationEvent) -> None:
        if event.sender != self.client.user_id:
            self.logger.info(f"Ignoring verification request from another user: {event.sender}")
            return

        try:
            if isinstance(event, KeyVerificationStart):
                await self._on_start(event)
            elif isinstance(event, KeyVerificationKey):
                await self._on_key(event)
            elif isinstance(event, KeyVerificationMac):
                await self._on_mac(event)
            elif isinstance(event, KeyVerificationCancel):
                self.logger.info(
                    f"Verification {event.transaction_id} cancelled by {event.sender}: {event.reason}"
                )
        except Exception as e:
            self.logger.error(
                f"Verification {getattr(event, 'transaction_id', '?')} failed: {e}", exc_info=True
            )

    async def _on_start(self, event: KeyVerificationStart) -> None:
        if "emoji" not in event.short_authentication_string:
            self.logger.warning(
                f"Verification {event.transaction_id} does not offer emoji SAS, ignoring"
            )
            return

        print(f"Accepting verification request from device {event.from_device}")
        response = await self.client.accept_key_verification(event.transaction_id)
        if isinstance(response, ToDeviceError):
            self.logger.error(f"accept_key_verification failed: {response}")
            return

        sas = self.client.key_verifications[event.transaction_id]
        response = await self.client.to_device(sas.share_key())
        if isinstance(response, ToDeviceError):
            self.logger.error(f"Sharing the verification key failed: {response}")

    async def _on_key(self, event: KeyVerificationKey) -> None:
        sas = self.client.key_verifications[event.transaction_id]
        emoji = " ".join(f"{symbol} ({name})" for symbol, name in sas.get_emoji())
        print(f"Confirming verification emoji: {emoji}")

        response = await self.client.confirm_short_auth_string(event.transaction_id)
        if isinstance(response, ToDeviceError):
            self.logger.error(f"confirm_short_auth_string failed: {response}")

    async def _on_mac(self, event: KeyVerificationMac) -> None:
        sas = self.client.key_verifications[event.transaction_id]
        response = await self.client.to_device(sas.get_mac())
        if isinstance(response, ToDeviceError):
            self.logger.error(f"Sending the verification MAC failed: {response}")
            return

        self.verified_devices.append(sas.other_olm_device.id)
        print(f"Device {sas.other_olm_device.id} verified")
