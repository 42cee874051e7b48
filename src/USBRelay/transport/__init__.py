"""
USBRelay Transport module.
Provides HID communication layer for USB relay boards.
"""

from .hid_transport import HIDConnection, HIDTransport
from .mock_transport import MockRelayBoard, MockTransport

__all__ = ['HIDConnection', 'HIDTransport', 'MockRelayBoard', 'MockTransport']
