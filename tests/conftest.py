import os
import sys

import pytest

# Add src to python path so we can import modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from USBRelay.device_manager import DeviceManager
from USBRelay.protocol import RelayProtocol
from USBRelay.transport.mock_transport import MockRelayBoard, MockTransport


@pytest.fixture
def protocol():
    """Protocol without the Windows report ID quirk, whatever the host."""
    return RelayProtocol()


@pytest.fixture
def mock_transport():
    """Fixture that returns a mock transport with two attached boards."""
    return MockTransport(boards=[
        MockRelayBoard("mock/1", serial="ABCDE", relay_count=2),
        MockRelayBoard("mock/2", serial="QWERT", relay_count=8),
    ])


@pytest.fixture
def manager(mock_transport, protocol):
    return DeviceManager(transport=mock_transport, protocol=protocol)
