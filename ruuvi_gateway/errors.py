"""Exception types raised by the gateway."""


class GatewayError(Exception):
    """Base class for all gateway errors."""


class DecodeError(GatewayError, ValueError):
    """An advertisement payload could not be decoded."""


class InvalidLengthError(DecodeError):
    """The payload is shorter than its data format requires."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Unexpected payload length: expected at least {expected} bytes, got {actual}")
        self.expected = expected
        self.actual = actual


class UnknownFormatError(DecodeError):
    """The discriminator byte does not identify a known data format."""

    def __init__(self, data_format: int):
        super().__init__(f"Unknown data format: 0x{data_format:02X}")
        self.data_format = data_format


class FormatMismatchError(DecodeError):
    """A format-specific parser was given a payload for another format."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Unexpected data format: expected 0x{expected:02X}, got 0x{actual:02X}")
        self.expected = expected
        self.actual = actual


class AlreadyRunningError(GatewayError, RuntimeError):
    """The publisher is already running."""

    def __init__(self):
        super().__init__("Publisher is already running")


class ConfigError(GatewayError, ValueError):
    """Invalid gateway configuration."""
