"""Exception taxonomy shared by the sensor-to-alert pipeline."""

from __future__ import annotations


class AirQualityError(Exception):
    """Base class for every pipeline failure."""


class AcquisitionError(AirQualityError):
    """No usable sensor data could be obtained."""


class ParseError(AirQualityError):
    """An upstream sensor payload could not be interpreted."""


class DeliveryError(AirQualityError):
    """A notification could not be delivered."""


class StoreError(AirQualityError):
    """The reading store could not be read or written."""


class ConfigurationError(AirQualityError):
    """Startup configuration is incomplete or invalid."""
