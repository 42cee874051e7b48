"""
Feature report protocol of the dcttech style USB HID relay boards.

Every exchange with a board is a 9-byte HID feature report:

Command report (host -> board):
[0]: Report ID (always 0)
[1]: Opcode
     0xFF - set one relay ON        0xFD - set one relay OFF
     0xFE - set all relays ON       0xFC - set all relays OFF
     0xFA - write serial number
[2]: Relay number (single relay opcodes only)
[2-6]: Serial number (0xFA only, 5 ASCII bytes)

Status report (board -> host):
[0]: Report ID
[1-5]: Serial number (ASCII, zero padded)
[8]: Relay state bitmap, bit 0 = relay 1

On Windows the feature report read carries one extra report ID byte in
front of the layout above. ``RelayProtocol.report_id_prefix`` records
this and ``normalize_report`` is the only place that acts on it.

The functions here do no I/O and keep no state.
"""

import sys
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Union

from .errors import InvalidSerialNumberError


class RelayState(IntEnum):
    OFF = 0
    ON = 1

    @property
    def opposite(self) -> "RelayState":
        return RelayState.OFF if self is RelayState.ON else RelayState.ON


class AllChannels:
    """Target addressing every relay of a board at once."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "ALL"

    def __str__(self):
        return "all"


ALL = AllChannels()

Target = Union[int, AllChannels]


@dataclass(frozen=True)
class RelayProtocol:
    """Opcodes and sizes of the relay feature report protocol."""

    report_length: int = 9
    serial_length: int = 5
    max_relays: int = 8
    report_id_prefix: bool = False

    set_on: int = 0xFF
    set_off: int = 0xFD
    set_all_on: int = 0xFE
    set_all_off: int = 0xFC
    set_serial: int = 0xFA

    status_index: int = 8
    serial_index: int = 1

    @property
    def read_length(self) -> int:
        """Number of bytes to request when reading a feature report."""
        return self.report_length + (1 if self.report_id_prefix else 0)


def platform_has_report_id_prefix(platform=None) -> bool:
    platform = platform if platform is not None else sys.platform
    return platform.startswith("win")


def default_protocol(**overrides) -> RelayProtocol:
    """
    Build the protocol for the running platform.

    The report ID quirk is resolved here, once, unless the caller passes
    ``report_id_prefix`` explicitly.
    """
    overrides.setdefault("report_id_prefix", platform_has_report_id_prefix())
    return RelayProtocol(**overrides)


def encode_set_command(state: RelayState, target: Target, protocol: RelayProtocol) -> bytes:
    """
    Build the command report switching ``target`` to ``state``.

    :param state: RelayState.ON or RelayState.OFF
    :param target: relay number or ALL. Checking the number against the
                   board's relay count is the caller's job.
    :return: report of ``protocol.report_length`` bytes
    """
    packet = bytearray(protocol.report_length)
    packet[0] = 0  # Report ID
    if target is ALL:
        packet[1] = protocol.set_all_on if state == RelayState.ON else protocol.set_all_off
    else:
        if not isinstance(target, int) or isinstance(target, bool) or not 0 <= target <= 0xFF:
            raise ValueError(f"relay number {target!r} does not fit in a command report")
        packet[1] = protocol.set_on if state == RelayState.ON else protocol.set_off
        packet[2] = target
    return bytes(packet)


def encode_set_serial(serial: str, protocol: RelayProtocol) -> bytes:
    packet = bytearray(protocol.report_length)
    packet[0] = 0
    packet[1] = protocol.set_serial
    raw = serial.encode("ascii")[: protocol.serial_length]
    packet[2 : 2 + len(raw)] = raw
    return bytes(packet)


def normalize_report(buffer: bytes, protocol: RelayProtocol) -> bytes:
    """
    Bring a feature report read into the canonical layout.

    Strips the leading report ID byte on platforms that add one, and zero
    pads short reads so the fixed offsets are always valid.
    """
    data = bytes(buffer)
    if protocol.report_id_prefix:
        data = data[1:]
    if len(data) < protocol.report_length:
        data = data + bytes(protocol.report_length - len(data))
    return data[: protocol.report_length]


def decode_status(buffer: bytes, relay_count: int, protocol: RelayProtocol) -> Dict[int, RelayState]:
    bitmap = normalize_report(buffer, protocol)[protocol.status_index]
    return {i + 1: RelayState((bitmap >> i) & 1) for i in range(relay_count)}


def decode_serial(buffer: bytes, protocol: RelayProtocol) -> str:
    data = normalize_report(buffer, protocol)
    raw = data[protocol.serial_index : protocol.serial_index + protocol.serial_length]
    return normalize_serial(raw.decode("ascii", errors="replace"))


def normalize_serial(serial: str) -> str:
    """Drop the NUL/space padding boards use for serials shorter than 5."""
    return serial.rstrip("\x00 ")


def validate_serial(serial: str, protocol: RelayProtocol) -> str:
    """
    Check a serial number can be written to a board.

    :raises InvalidSerialNumberError: too long or not printable ASCII
    :return: the serial, unchanged
    """
    if not isinstance(serial, str):
        raise InvalidSerialNumberError(serial, "must be a string")
    if len(serial) > protocol.serial_length:
        raise InvalidSerialNumberError(
            serial, f"longer than {protocol.serial_length} characters"
        )
    if any(not 0x20 <= ord(c) <= 0x7E for c in serial):
        raise InvalidSerialNumberError(serial, "only printable ASCII characters are allowed")
    return serial


def parse_target(value: str) -> Target:
    """Parse a relay argument: a number or 'all' (any case)."""
    if value.strip().lower() == "all":
        return ALL
    return int(value)
