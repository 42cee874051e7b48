"""
Mock HID transport for testing and headless mode.
"""
import logging
from typing import Dict, Iterable, List, Optional

from ..errors import TransportError
from ..product_ids import RELAY_NAME_PREFIX, USBProductIDs, USBVendorIDs


class MockRelayBoard:
    """
    In-memory stand-in for one relay board.

    Keeps a serial number and a state bitmap and reacts to command reports
    the way the hardware does. Relays listed in ``stuck`` ignore commands,
    which is how tests provoke verification failures.
    """

    def __init__(self, path: str, serial: str = "ABCDE", relay_count: int = 2,
                 product_string: Optional[str] = None, stuck: Iterable[int] = ()):
        self.path = path
        self.serial = serial
        self.relay_count = relay_count
        self.product_string = product_string or f"{RELAY_NAME_PREFIX}{relay_count}"
        self.stuck = set(stuck)
        self.bitmap = 0
        self.fail_reads = False
        self.fail_writes = False

    def _set(self, relay: int, on: bool):
        if relay in self.stuck or not 1 <= relay <= 8:
            return
        if on:
            self.bitmap |= 1 << (relay - 1)
        else:
            self.bitmap &= ~(1 << (relay - 1))

    def apply(self, packet: bytes):
        opcode = packet[1]
        if opcode == 0xFF:
            self._set(packet[2], True)
        elif opcode == 0xFD:
            self._set(packet[2], False)
        elif opcode in (0xFE, 0xFC):
            for relay in range(1, self.relay_count + 1):
                self._set(relay, opcode == 0xFE)
        elif opcode == 0xFA:
            self.serial = packet[2:7].decode("ascii").rstrip("\x00")

    def report(self) -> bytes:
        packet = bytearray(9)
        raw = self.serial.encode("ascii")[:5]
        packet[1 : 1 + len(raw)] = raw
        packet[8] = self.bitmap
        return bytes(packet)

    def is_on(self, relay: int) -> bool:
        return bool(self.bitmap & (1 << (relay - 1)))


class MockConnection:
    def __init__(self, transport: "MockTransport", board: MockRelayBoard):
        self._transport = transport
        self.board = board
        self.path = board.path
        self.is_open = True

    def _require_open(self):
        if not self.is_open:
            raise TransportError(f"HID device {self.path} is closed")

    def get_feature_report(self, length: int, report_id: int = 0) -> bytes:
        self._require_open()
        self._transport.reads += 1
        if self.board.fail_reads:
            raise TransportError(f"get feature report failed on {self.path}", code=-1)
        data = self.board.report()
        if self._transport.report_id_prefix:
            data = bytes([report_id]) + data
        return data[:length]

    def send_feature_report(self, data: bytes) -> int:
        self._require_open()
        if self.board.fail_writes:
            raise TransportError(f"send feature report failed on {self.path}", code=-1)
        self._transport.sent_packets.append(bytes(data))
        self._transport.logger.info(f"[Mock] {self.path} <- {bytes(data).hex()}")
        self.board.apply(bytes(data))
        return len(data)

    def close(self):
        self.is_open = False
        self._transport.open_connections.discard(self)


class MockTransport:
    """
    Mock HID transport that simulates attached relay boards.
    Same surface as HIDTransport, plus helpers to inspect traffic.
    """

    def __init__(self, boards: Optional[List[MockRelayBoard]] = None, report_id_prefix: bool = False):
        self.logger = logging.getLogger(__name__)
        self.boards: Dict[str, MockRelayBoard] = {}
        self.report_id_prefix = report_id_prefix
        # Log of packets sent to the boards (what PC sends to device)
        self.sent_packets: List[bytes] = []
        self.reads = 0
        self.opens = 0
        self.open_connections = set()
        for board in boards or []:
            self.add_board(board)

    def add_board(self, board: MockRelayBoard) -> MockRelayBoard:
        self.boards[board.path] = board
        return board

    def remove_board(self, path: str):
        self.boards.pop(path, None)

    def open(self, path) -> MockConnection:
        """Simulate opening the device."""
        if isinstance(path, bytes):
            path = path.decode("utf-8")
        board = self.boards.get(path)
        if board is None:
            raise TransportError(f"could not open HID device {path}")
        self.logger.info(f"Opening mock device at {path}")
        self.opens += 1
        connection = MockConnection(self, board)
        self.open_connections.add(connection)
        return connection

    def enumerate(self, vid: int, pid: int) -> List[Dict]:
        if (vid, pid) != (USBVendorIDs.USB_VID_DCTTECH, USBProductIDs.USB_PID_USBRELAY):
            return []
        return [
            {
                "path": board.path,
                "vendor_id": vid,
                "product_id": pid,
                "product_string": board.product_string,
                "interface_number": 0,
            }
            for board in self.boards.values()
        ]
