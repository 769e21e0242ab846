"""
SMS alert composition and batch dispatch
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import Dict, List, Protocol

from ..config import (
    CANCEL_MESSAGE,
    DEFAULT_USER_NAME,
    EMERGENCY_MESSAGE,
    MIN_PHONE_DIGITS,
    SMS_TIMEOUT_SECONDS,
    TEST_MESSAGE,
    UNKNOWN_LOCATION,
)
from ..errors import DispatchFailure, PermissionUnavailable
from ..models import Alert, DispatchReport, EmergencyContact

logger = logging.getLogger(__name__)


class SmsGateway(Protocol):
    def send_batch(self, message: str, recipients: List[str]) -> Dict[str, bool]:
        """Send one message to many numbers; per-number success."""


def is_valid_phone_number(phone_number: str) -> bool:
    return len(re.sub(r"[^\d+]", "", phone_number)) >= MIN_PHONE_DIGITS


class SmsDispatcher:
    """
    Builds alert messages from templates and sends them to enabled contacts

    Individual recipient failures are logged and skipped; the batch only
    counts as failed when nobody was reached.
    """

    def __init__(self, gateway: SmsGateway, user_name=DEFAULT_USER_NAME, timeout=SMS_TIMEOUT_SECONDS):
        self.gateway = gateway
        self.user_name = user_name
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="sms")

    @staticmethod
    def describe_location(alert: Alert) -> str:
        if alert.address and alert.has_location:
            return f"{alert.address} ({alert.latitude:.6f}, {alert.longitude:.6f})"
        if alert.has_location:
            return f"{alert.latitude:.6f}, {alert.longitude:.6f}"
        if alert.address:
            return alert.address
        return UNKNOWN_LOCATION

    def build_emergency_message(self, alert: Alert) -> str:
        message = EMERGENCY_MESSAGE.format(
            name=self.user_name,
            location=self.describe_location(alert),
            timestamp=datetime.fromtimestamp(alert.timestamp).strftime("%Y-%m-%d %H:%M:%S"),
            alertType=alert.type.description,
        )
        if alert.custom_message:
            message = f"{message} {alert.custom_message}"
        return message

    def build_cancellation_message(self) -> str:
        return CANCEL_MESSAGE.format(name=self.user_name)

    def _send(self, message: str, contacts: List[EmergencyContact]) -> DispatchReport:
        report = DispatchReport()
        enabled = [c for c in contacts if c.is_enabled]
        if not enabled:
            logger.warning("No enabled contacts found")
            return report

        future = self._executor.submit(self.gateway.send_batch, message, [c.phone_number for c in enabled])
        try:
            results = future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            logger.error(f"SMS gateway did not answer within {self.timeout}s")
            results = {}
        except PermissionUnavailable as e:
            logger.error(f"SMS permission unavailable: {e}")
            results = {}
        except Exception as e:
            logger.error(f"SMS batch send failed: {e}")
            results = {}

        for contact in enabled:
            if results.get(contact.phone_number):
                report.sent.append(contact.id)
            else:
                logger.error(f"SMS to {contact.name} ({contact.phone_number}) failed")
                report.failed.append(contact.id)
        logger.info(f"SMS sent to {len(report.sent)}/{len(enabled)} contacts")
        return report

    def send_emergency_alert(self, contacts: List[EmergencyContact], alert: Alert) -> DispatchReport:
        """
        Send the emergency alert to every enabled contact
        Raises DispatchFailure when no contact could be reached
        """
        report = self._send(self.build_emergency_message(alert), contacts)
        if report.all_failed:
            raise DispatchFailure(f"Emergency SMS for alert {alert.id} reached nobody", report.failed)
        return report

    def send_cancellation(self, contacts: List[EmergencyContact]) -> DispatchReport:
        return self._send(self.build_cancellation_message(), contacts)

    def send_test_message(self, contact: EmergencyContact) -> bool:
        report = self._send(TEST_MESSAGE.format(name=self.user_name), [contact])
        return contact.id in report.sent


    def shutdown(self):
        self._executor.shutdown(wait=False)
