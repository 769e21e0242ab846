"""
Best-effort location resolution for emergency alerts
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import replace
from typing import Optional, Protocol

from ..config import GEOCODING_TIMEOUT_SECONDS, LOCATION_TIMEOUT_SECONDS
from ..errors import LocationUnresolved, PermissionUnavailable
from ..models import LocationFix

logger = logging.getLogger(__name__)


class LocationProvider(Protocol):
    def get_current_fix(self) -> Optional[LocationFix]: ...

    def get_last_known_fix(self) -> Optional[LocationFix]: ...

    def reverse_geocode(self, latitude: float, longitude: float) -> Optional[str]: ...


class LocationResolver:
    """
    Wraps a LocationProvider with timeouts and fallbacks

    A fresh fix is requested with a timeout; on timeout, denial or error the
    last known fix is used; when neither is available the result is None.
    The address lookup is optional and never blocks the alert.
    """

    def __init__(
        self,
        provider: LocationProvider,
        timeout=LOCATION_TIMEOUT_SECONDS,
        geocoding_timeout=GEOCODING_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.timeout = timeout
        self.geocoding_timeout = geocoding_timeout
        self.last_fix: Optional[LocationFix] = None
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="location")

    def _call_with_timeout(self, fn, timeout, *args):
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            raise

    def current_fix(self) -> LocationFix:
        """Fresh fix, else last known. Raises LocationUnresolved when both fail."""
        try:
            fix = self._call_with_timeout(self.provider.get_current_fix, self.timeout)
            if fix is not None:
                self.last_fix = fix
                return fix
            logger.warning("Location provider returned no fix")
        except FutureTimeout:
            logger.warning(f"Location fix timed out after {self.timeout}s, using last known")
        except PermissionUnavailable as e:
            logger.warning(f"Location permission unavailable: {e}")
        except Exception as e:
            logger.error(f"Error getting current location: {e}")

        try:
            fix = self.provider.get_last_known_fix()
        except Exception as e:
            logger.error(f"Error getting last known location: {e}")
            fix = None
        fix = fix or self.last_fix
        if fix is None:
            raise LocationUnresolved("No current or last known location available")
        return fix

    def address_for(self, fix: LocationFix) -> Optional[str]:
        try:
            return self._call_with_timeout(
                self.provider.reverse_geocode, self.geocoding_timeout, fix.latitude, fix.longitude
            )
        except FutureTimeout:
            logger.warning("Reverse geocoding timed out")
        except Exception as e:
            logger.warning(f"Error getting address: {e}")
        return None

    def resolve(self) -> Optional[LocationFix]:
        """Location with address when possible; None when no fix is available."""
        try:
            fix = self.current_fix()
        except LocationUnresolved as e:
            logger.warning(f"Continuing without location: {e}")
            return None
        address = self.address_for(fix)
        return replace(fix, address=address) if address else fix

    def shutdown(self):
        self._executor.shutdown(wait=False)
