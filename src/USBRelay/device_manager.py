import logging

import pyudev

from .errors import InvalidNumberOfRelaysError, NoDeviceFoundError
from .product_ids import RELAY_NAME_PREFIX, g_products
from .protocol import default_protocol, normalize_serial
from .transport.hid_transport import HIDTransport
from .transport.mock_transport import MockTransport


class DeviceManager:
    """
    Finds USB relay boards and hands out closed RelayBoard objects.

    Every enumerate() builds new board objects; identity across calls (and
    across replugs) is the serial number, never the OS path.
    """

    @staticmethod
    def _get_transport(transport):
        if transport == "mock":
            return MockTransport()
        if transport is None:
            return HIDTransport()
        return transport

    def __init__(self, transport=None, protocol=None, skip_unchanged=False):
        self.relay_boards = list()
        self.logger = logging.getLogger(__name__)
        self.transport = self._get_transport(transport)
        self.protocol = protocol or default_protocol()
        self.skip_unchanged = skip_unchanged

    def _parse_relay_count(self, product_string):
        suffix = product_string[len(RELAY_NAME_PREFIX):]
        if not (suffix.isascii() and suffix.isdigit()):
            raise InvalidNumberOfRelaysError(product_string)
        relay_count = int(suffix)
        if not 1 <= relay_count <= self.protocol.max_relays:
            raise InvalidNumberOfRelaysError(product_string, relay_count)
        return relay_count

    def enumerate(self):
        """
        Lists the attached relay boards with their serial numbers read.

        Each board is opened just long enough to read its serial number and
        is returned closed. Enumeration is all or nothing: an unsupported
        relay count or a failing board aborts the whole call.

        :raises NoDeviceFoundError: no HID device with a known VID/PID
        :raises InvalidNumberOfRelaysError: a board has an unsupported product name
        :raises TransportError: a board could not be opened or read
        """
        found_devices = []
        for vid, pid, class_type in g_products:
            for dev_info in self.transport.enumerate(vid=vid, pid=pid):
                found_devices.append((class_type, dev_info))

        if not found_devices:
            raise NoDeviceFoundError(devices=[])

        relay_boards = []
        for class_type, dev_info in found_devices:
            product_string = dev_info.get("product_string") or ""
            if not product_string.startswith(RELAY_NAME_PREFIX):
                self.logger.debug(f"Skipping {dev_info['path']} ({product_string!r})")
                continue
            relay_count = self._parse_relay_count(product_string)
            relay_boards.append(class_type(
                self.transport, dev_info, relay_count,
                protocol=self.protocol, skip_unchanged=self.skip_unchanged,
            ))

        for board in relay_boards:
            board.open()
            try:
                board.get_serial_number()
            finally:
                board.close()
            self.logger.info(f"Found relay board {board} at {board.get_path()}")

        self.relay_boards = relay_boards
        return relay_boards

    def get_device_by_serial_number(self, serial_number):
        """
        Re-enumerates and returns the closed board carrying ``serial_number``.

        Serial numbers are case sensitive.

        :raises NoDeviceFoundError: no attached board has that serial number
        """
        wanted = normalize_serial(serial_number)
        for board in self.enumerate():
            if board.get_serial_number() == wanted:
                return board
        raise NoDeviceFoundError(f"no device found with serial number {serial_number!r}")

    def _enumerate_quietly(self):
        try:
            return self.enumerate()
        except NoDeviceFoundError:
            self.relay_boards = []
            return []

    @staticmethod
    def _event_ids(device):
        vendor_id_str = device.get('ID_VENDOR_ID')
        product_id_str = device.get('ID_MODEL_ID')
        if (not vendor_id_str or not product_id_str) and device.get('PRODUCT'):
            # Remove events only carry PRODUCT=vid/pid/bcdDevice
            parts = device.get('PRODUCT').split('/')
            if len(parts) >= 2:
                vendor_id_str, product_id_str = parts[0], parts[1]
        if not vendor_id_str or not product_id_str:
            return None
        try:
            return int(vendor_id_str, 16), int(product_id_str, 16)
        except ValueError:
            return None

    @staticmethod
    def _board_key(board):
        # boards sharing a serial number are told apart by path
        return board.get_serial_number(), board.get_path()

    def listen(self, on_add=None, on_remove=None):
        """
        Blocks forever, reporting relay boards as they are plugged in or
        removed. Run it on a daemon thread.

        :param function on_add: called with each new RelayBoard
        :param function on_remove: called with each RelayBoard that went away
        """
        products = {(vid, pid) for vid, pid, _ in g_products}
        known = {self._board_key(board): board for board in self.relay_boards}

        context = pyudev.Context()
        monitor = pyudev.Monitor.from_netlink(context)
        monitor.filter_by(subsystem='usb')

        for device in iter(monitor.poll, None):
            action = device.action
            if action not in ['add', 'remove']:
                continue
            if self._event_ids(device) not in products:
                continue

            try:
                current = {self._board_key(board): board for board in self._enumerate_quietly()}
            except Exception:
                self.logger.exception(f"Failed to enumerate relay boards after {action} event")
                continue

            if action == 'add':
                for key, board in current.items():
                    if key not in known:
                        self.logger.info(f"[add] {board} path: {board.get_path()}")
                        if on_add is not None:
                            on_add(board)
            else:
                for key, board in known.items():
                    if key not in current:
                        self.logger.info(f"[remove] {board} path: {board.get_path()}")
                        if on_remove is not None:
                            on_remove(board)

            known = current
