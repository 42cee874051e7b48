from unittest.mock import MagicMock, patch

import pytest

from USBRelay.device_manager import DeviceManager
from USBRelay.devices.relay_board import RelayBoard
from USBRelay.errors import (InvalidNumberOfRelaysError, NoDeviceFoundError,
                             TransportError)
from USBRelay.product_ids import USBProductIDs, USBVendorIDs
from USBRelay.protocol import RelayProtocol
from USBRelay.transport.mock_transport import MockRelayBoard, MockTransport


def test_enumerate_finds_devices(manager, mock_transport):
    devices = manager.enumerate()

    assert [d.info() for d in devices] == [
        ("ABCDE", USBVendorIDs.USB_VID_DCTTECH, USBProductIDs.USB_PID_USBRELAY, 2),
        ("QWERT", USBVendorIDs.USB_VID_DCTTECH, USBProductIDs.USB_PID_USBRELAY, 8),
    ]
    # every probe was closed again and no state was read beyond the serial
    assert all(not d.is_open for d in devices)
    assert mock_transport.open_connections == set()
    assert mock_transport.reads == 2
    assert mock_transport.sent_packets == []
    assert manager.relay_boards == devices


def test_enumerate_creates_fresh_objects(manager):
    first = manager.enumerate()
    second = manager.enumerate()
    assert first[0] is not second[0]
    assert first[0].get_serial_number() == second[0].get_serial_number()


def test_enumerate_without_devices_raises(protocol):
    manager = DeviceManager(transport=MockTransport(), protocol=protocol)
    with pytest.raises(NoDeviceFoundError) as excinfo:
        manager.enumerate()
    assert excinfo.value.devices == []


def test_enumerate_skips_other_products(protocol):
    transport = MockTransport(boards=[
        MockRelayBoard("mock/1", product_string="SomeOtherHID"),
        MockRelayBoard("mock/2", serial="ZZZZZ", relay_count=4),
    ])
    manager = DeviceManager(transport=transport, protocol=protocol)

    devices = manager.enumerate()

    assert [d.get_path() for d in devices] == ["mock/2"]
    assert devices[0].relay_count == 4


def test_enumerate_only_other_products_returns_empty_list(protocol):
    transport = MockTransport(boards=[MockRelayBoard("mock/1", product_string="Keyboard")])
    manager = DeviceManager(transport=transport, protocol=protocol)
    assert manager.enumerate() == []


@pytest.mark.parametrize("product_string", ["USBRelay13", "USBRelay0", "USBRelay9", "USBRelayX", "USBRelay", "USBRelay²"])
def test_enumerate_rejects_unsupported_relay_count(protocol, product_string):
    transport = MockTransport(boards=[
        MockRelayBoard("mock/1", relay_count=2),
        MockRelayBoard("mock/2", product_string=product_string),
    ])
    manager = DeviceManager(transport=transport, protocol=protocol)

    with pytest.raises(InvalidNumberOfRelaysError):
        manager.enumerate()
    # nothing was probed, the whole call failed
    assert transport.opens == 0
    assert manager.relay_boards == []


def test_max_relays_is_configurable():
    transport = MockTransport(boards=[MockRelayBoard("mock/1", relay_count=8)])
    manager = DeviceManager(transport=transport, protocol=RelayProtocol(max_relays=4))
    with pytest.raises(InvalidNumberOfRelaysError) as excinfo:
        manager.enumerate()
    assert excinfo.value.count == 8


def test_enumerate_aborts_on_probe_failure(protocol):
    bad = MockRelayBoard("mock/2", serial="BAD01")
    bad.fail_reads = True
    transport = MockTransport(boards=[MockRelayBoard("mock/1"), bad])
    manager = DeviceManager(transport=transport, protocol=protocol)

    with pytest.raises(TransportError):
        manager.enumerate()
    # the failing probe was still closed
    assert transport.open_connections == set()


def test_get_device_by_serial_number(manager):
    board = manager.get_device_by_serial_number("QWERT")
    assert board.info()[0] == "QWERT"
    assert board.relay_count == 8
    assert not board.is_open


def test_get_device_by_serial_number_is_case_sensitive(manager):
    with pytest.raises(NoDeviceFoundError):
        manager.get_device_by_serial_number("abcde")


def test_get_device_by_unknown_serial_number(manager):
    with pytest.raises(NoDeviceFoundError) as excinfo:
        manager.get_device_by_serial_number("ZZZZZ")
    assert "ZZZZZ" in str(excinfo.value)


def test_get_device_by_serial_number_reenumerates(manager, mock_transport):
    manager.enumerate()
    mock_transport.add_board(MockRelayBoard("mock/3", serial="LATE1", relay_count=1))
    assert manager.get_device_by_serial_number("LATE1").get_path() == "mock/3"


def test_get_device_by_serial_number_next_to_blank_serial(protocol):
    transport = MockTransport(boards=[
        MockRelayBoard("mock/1", serial=""),
        MockRelayBoard("mock/2", serial="ABCDE"),
    ])
    manager = DeviceManager(transport=transport, protocol=protocol)

    assert manager.get_device_by_serial_number("ABCDE").get_path() == "mock/2"
    assert manager.get_device_by_serial_number("").get_path() == "mock/1"
    assert transport.open_connections == set()


def test_lookup_then_switch(manager, mock_transport):
    board = manager.get_device_by_serial_number("ABCDE")
    with board:
        board.on(2)
    assert mock_transport.boards["mock/1"].is_on(2)


def test_manager_mock_mode():
    manager = DeviceManager(transport="mock")
    assert isinstance(manager.transport, MockTransport)


@patch('USBRelay.device_manager.HIDTransport')
def test_manager_default_transport(mock_hid_transport):
    manager = DeviceManager()
    assert manager.transport is mock_hid_transport.return_value


@patch('USBRelay.device_manager.g_products')
def test_enumerate_uses_g_products(mock_g_products):
    # Setup custom g_products for testing
    mock_cls = MagicMock()
    mock_g_products.__iter__.return_value = [(0x1234, 0x5678, mock_cls)]

    transport = MagicMock()
    fake_device_info = {'path': 'path/to/device', 'product_string': 'USBRelay2'}
    transport.enumerate.return_value = [fake_device_info]
    protocol = RelayProtocol()

    manager = DeviceManager(transport=transport, protocol=protocol)
    devices = manager.enumerate()

    assert len(devices) == 1
    transport.enumerate.assert_called_with(vid=0x1234, pid=0x5678)
    mock_cls.assert_called_with(transport, fake_device_info, 2, protocol=protocol, skip_unchanged=False)
    devices[0].open.assert_called_once_with()
    devices[0].get_serial_number.assert_called_once_with()
    devices[0].close.assert_called_once_with()


def _udev_event(action, vid=USBVendorIDs.USB_VID_DCTTECH, pid=USBProductIDs.USB_PID_USBRELAY):
    event = MagicMock()
    event.action = action
    ids = {'ID_VENDOR_ID': f"{vid:04x}", 'ID_MODEL_ID': f"{pid:04x}"}
    event.get.side_effect = lambda key: ids.get(key)
    return event


@patch('pyudev.Context')
@patch('pyudev.Monitor')
def test_listen_add_device(mock_monitor, mock_context, manager, mock_transport):
    manager.enumerate()
    new_board = mock_transport.add_board(MockRelayBoard("mock/3", serial="NEW01", relay_count=4))

    # Configure poll to yield device then None to stop loop
    monitor_instance = mock_monitor.from_netlink.return_value
    monitor_instance.poll.side_effect = [_udev_event('add'), None]

    added = []
    manager.listen(on_add=added.append)

    assert [board.get_serial_number() for board in added] == ["NEW01"]
    assert added[0].get_path() == new_board.path
    assert len(manager.relay_boards) == 3
    monitor_instance.filter_by.assert_called_once_with(subsystem='usb')


@patch('pyudev.Context')
@patch('pyudev.Monitor')
def test_listen_remove_device(mock_monitor, mock_context, manager, mock_transport):
    manager.enumerate()
    mock_transport.remove_board("mock/1")

    # Remove events only carry PRODUCT
    event = MagicMock()
    event.action = 'remove'
    event.get.side_effect = lambda key: "16c0/5df/100" if key == 'PRODUCT' else None
    monitor_instance = mock_monitor.from_netlink.return_value
    monitor_instance.poll.side_effect = [event, None]

    removed = []
    manager.listen(on_remove=removed.append)

    assert [board.get_serial_number() for board in removed] == ["ABCDE"]
    assert [board.get_serial_number() for board in manager.relay_boards] == ["QWERT"]


@patch('pyudev.Context')
@patch('pyudev.Monitor')
def test_listen_last_device_removed(mock_monitor, mock_context, manager, mock_transport):
    manager.enumerate()
    mock_transport.boards.clear()
    monitor_instance = mock_monitor.from_netlink.return_value
    monitor_instance.poll.side_effect = [_udev_event('remove'), None]

    removed = []
    manager.listen(on_remove=removed.append)

    assert sorted(board.get_serial_number() for board in removed) == ["ABCDE", "QWERT"]
    assert manager.relay_boards == []


@patch('pyudev.Context')
@patch('pyudev.Monitor')
def test_listen_with_blank_serial_board(mock_monitor, mock_context, manager, mock_transport):
    mock_transport.add_board(MockRelayBoard("mock/3", serial="", relay_count=1))
    manager.enumerate()
    mock_transport.add_board(MockRelayBoard("mock/4", serial="NEW01", relay_count=4))
    monitor_instance = mock_monitor.from_netlink.return_value
    monitor_instance.poll.side_effect = [_udev_event('add'), None]

    added = []
    manager.listen(on_add=added.append)

    assert [board.get_serial_number() for board in added] == ["NEW01"]


@patch('pyudev.Context')
@patch('pyudev.Monitor')
def test_listen_boards_sharing_a_serial(mock_monitor, mock_context, manager, mock_transport):
    manager.enumerate()
    mock_transport.add_board(MockRelayBoard("mock/3", serial="ABCDE", relay_count=2))
    monitor_instance = mock_monitor.from_netlink.return_value
    monitor_instance.poll.side_effect = [_udev_event('add'), _udev_event('remove'), None]

    added, removed = [], []

    def unplug_copy(board):
        added.append(board)
        mock_transport.remove_board("mock/3")

    manager.listen(on_add=unplug_copy, on_remove=removed.append)

    assert [board.get_path() for board in added] == ["mock/3"]
    assert [board.get_path() for board in removed] == ["mock/3"]


@patch('pyudev.Context')
@patch('pyudev.Monitor')
def test_listen_ignores_other_devices(mock_monitor, mock_context, manager):
    manager.enumerate = MagicMock(return_value=[])
    monitor_instance = mock_monitor.from_netlink.return_value
    monitor_instance.poll.side_effect = [
        _udev_event('add', vid=0x046D, pid=0xC52B),
        _udev_event('bind'),
        None,
    ]

    manager.listen(on_add=MagicMock())

    manager.enumerate.assert_not_called()


@patch('pyudev.Context')
@patch('pyudev.Monitor')
def test_listen_survives_enumeration_errors(mock_monitor, mock_context, manager):
    manager.enumerate = MagicMock(side_effect=[TransportError("boom"), []])
    monitor_instance = mock_monitor.from_netlink.return_value
    monitor_instance.poll.side_effect = [_udev_event('add'), _udev_event('add'), None]

    manager.listen()

    assert manager.enumerate.call_count == 2


def test_enumerated_boards_are_relay_boards(manager):
    assert all(isinstance(board, RelayBoard) for board in manager.enumerate())
