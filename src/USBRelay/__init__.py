from .config_loader import ConfigLoader, ConfigValidationError
from .device_manager import DeviceManager
from .devices.relay_board import RelayBoard
from .errors import (DeviceNotConnectedError, InvalidNumberOfRelaysError,
                     InvalidRelayNumberError, InvalidSerialNumberError,
                     NoDeviceFoundError, RelayStateNotSetError,
                     TransportError, USBRelayError)
from .protocol import ALL, AllChannels, RelayProtocol, RelayState

__all__ = [
    'ALL', 'AllChannels', 'ConfigLoader', 'ConfigValidationError', 'DeviceManager',
    'DeviceNotConnectedError', 'InvalidNumberOfRelaysError', 'InvalidRelayNumberError',
    'InvalidSerialNumberError', 'NoDeviceFoundError', 'RelayBoard', 'RelayProtocol',
    'RelayState', 'RelayStateNotSetError', 'TransportError', 'USBRelayError',
]
