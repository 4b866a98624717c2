class PunisherError(Exception):
    """Base class for everything raised by the punisher services."""


class InspectorUnavailable(PunisherError):
    """
    The memory inspector could not begin a session
    (game not running, reader failed to attach, replay file missing...).
    """


class InvalidConfiguration(PunisherError, ValueError):
    """
    A setting was outside its allowed range.
    The previous value is kept.
    """

    def __init__(self, field, value, reason):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class DeviceCommandFailure(PunisherError):
    """The haptic device did not accept an intensity command."""

    def __init__(self, intensity, cause=None):
        self.intensity = intensity
        self.cause = cause
        super().__init__(f"Failed to set device intensity to {intensity}: {cause}")


class MemoryReadError(PunisherError):
    """A memory reader could not resolve or read a value."""
