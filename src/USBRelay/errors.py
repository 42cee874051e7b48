"""
Exceptions raised by the USB relay driver.

Every error derives from :class:`USBRelayError` so callers can catch the
whole family at once, while still telling "nothing attached" apart from
"the board ignored the command".
"""


class USBRelayError(Exception):
    """Base class for all relay board errors."""


class TransportError(USBRelayError):
    """Raised when the underlying HID transfer fails."""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code

    def __str__(self):
        if self.code:
            return f"[Error Code {self.code}] {super().__str__()}"
        return super().__str__()


class NoDeviceFoundError(USBRelayError):
    """No relay board matched the enumeration or lookup."""

    def __init__(self, message="no device found", devices=None):
        super().__init__(message)
        self.devices = devices if devices is not None else []


class DeviceNotConnectedError(USBRelayError):
    def __init__(self, message="device is not connected, call open()"):
        super().__init__(message)


class InvalidRelayNumberError(USBRelayError):
    def __init__(self, channel, relay_count):
        super().__init__(
            f"invalid relay number {channel!r}, must be 1-{relay_count} or ALL"
        )
        self.channel = channel
        self.relay_count = relay_count


class InvalidSerialNumberError(USBRelayError):
    def __init__(self, serial, reason):
        super().__init__(f"invalid serial number {serial!r}: {reason}")
        self.serial = serial
        self.reason = reason


class InvalidNumberOfRelaysError(USBRelayError):
    """A board reported a channel count outside the supported range."""

    def __init__(self, product_string, count=None):
        if count is None:
            message = f"cannot parse number of relays from product name {product_string!r}"
        else:
            message = f"unsupported number of relays {count} (product name {product_string!r})"
        super().__init__(message)
        self.product_string = product_string
        self.count = count


class RelayStateNotSetError(USBRelayError):
    """The command was sent but the board did not reach the intended state."""

    def __init__(self, channel, state):
        super().__init__(f"relay {channel} could not be set to {state.name}")
        self.channel = channel
        self.state = state
