import logging
import threading
from functools import wraps
from typing import Dict, Optional, Tuple

from ..errors import (DeviceNotConnectedError, InvalidRelayNumberError,
                      RelayStateNotSetError)
from ..protocol import (ALL, RelayProtocol, RelayState, Target,
                        decode_serial, decode_status, default_protocol,
                        encode_set_command, encode_set_serial,
                        normalize_serial, validate_serial)

logger = logging.getLogger(__name__)


def _locked(method):
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.update_lock:
            return method(self, *args, **kwargs)
    return wrapper


class RelayBoard:
    """
    Represents a physically attached USB relay board.

    Every public operation takes the board's update lock for its whole
    duration, so a state change, its verification read and the cache update
    are never interleaved with another thread's command on the same object.
    Two RelayBoard objects for the same physical board are not coordinated.
    """

    def __init__(self, transport, dev_info, relay_count: int,
                 protocol: Optional[RelayProtocol] = None, skip_unchanged: bool = False):
        self.transport = transport
        self.vendor_id = dev_info["vendor_id"]
        self.product_id = dev_info["product_id"]
        self.path = dev_info["path"]
        self.protocol = protocol or default_protocol()
        self.skip_unchanged = skip_unchanged

        self._relay_count = relay_count
        self._connection = None
        self._serial_number: Optional[str] = None  # None until read from the board
        self._states: Dict[int, RelayState] = {
            i: RelayState.OFF for i in range(1, relay_count + 1)
        }
        # True once the cache holds a verified read from the current session
        self._states_fresh = False

        self.update_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def __enter__(self):
        """
        Enter handler for the board: opens the HID connection without a
        state read. The connection is closed again by the exit handler.
        """
        self.open()
        return self

    def __exit__(self, type, value, traceback):
        self.close()

    def __str__(self):
        return f"{self._serial_number or ''}:{self._relay_count}:{self.vendor_id}:{self.product_id}"

    def __repr__(self):
        return f"<RelayBoard {self} path={self.path!r}>"

    @property
    def relay_count(self) -> int:
        return self._relay_count

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    @property
    def cached_states(self) -> Dict[int, RelayState]:
        """Last known relay states, without touching the hardware."""
        return dict(self._states)

    def info(self) -> Tuple[str, int, int, int]:
        return self._serial_number or "", self.vendor_id, self.product_id, self._relay_count

    def get_path(self):
        return self.path

    def id(self):
        """
        Retrieves the physical ID of the attached board. Use the serial
        number to tell boards apart across replugs; the path changes.

        :rtype: str
        :return: Identifier for the attached device.
        """
        return self.get_path()

    @_locked
    def open(self, verify_state: bool = False):
        """
        Opens the HID connection to the board.

        :param bool verify_state: read the relay states right away so the
                                  cache is fresh (not needed when only the
                                  serial number is of interest).
        """
        if self._connection is None:
            self._connection = self.transport.open(self.path)
            self.logger.debug(f"Opened relay board at {self.path}")
        if verify_state:
            self._read_states()

    @_locked
    def close(self):
        """
        Closes the HID connection. Cached serial number and relay states
        stay readable but are no longer refreshed.
        """
        if self._connection is None:
            return
        try:
            self._connection.close()
        finally:
            self._connection = None
            self._states_fresh = False
            self.logger.debug(f"Closed relay board at {self.path}")

    @_locked
    def on(self, target: Target):
        self._set_state(RelayState.ON, target)

    @_locked
    def off(self, target: Target):
        self._set_state(RelayState.OFF, target)

    @_locked
    def toggle(self, target: Target):
        """
        Flips one relay, or every relay in ascending order for ALL.

        There is no wire command for toggling all relays, so ALL is done one
        relay at a time. The first failure is raised immediately and the
        relays flipped before it stay flipped.
        """
        self._require_connection()
        self._check_target(target)
        if not self._states_fresh:
            self._read_states()

        if target is ALL:
            for channel in range(1, self._relay_count + 1):
                self._set_state(self._states[channel].opposite, channel)
        else:
            self._set_state(self._states[target].opposite, target)

    @_locked
    def states(self) -> Dict[int, RelayState]:
        self._require_connection()
        return dict(self._read_states())

    @_locked
    def set_serial_number(self, serial: str):
        """
        Writes a new serial number to the board's persistent memory.

        :param str serial: up to 5 printable ASCII characters
        """
        self._require_connection()
        validate_serial(serial, self.protocol)
        self._connection.send_feature_report(encode_set_serial(serial, self.protocol))
        self._serial_number = normalize_serial(serial)
        self.logger.info(f"Serial number of {self.path} set to {self._serial_number!r}")

    @_locked
    def get_serial_number(self) -> str:
        """
        Returns the board's serial number, reading it from the board the
        first time only. The serial is fixed for the lifetime of this
        object once observed.
        """
        if self._serial_number is not None:
            return self._serial_number
        self._require_connection()
        report = self._connection.get_feature_report(self.protocol.read_length)
        self._serial_number = decode_serial(report, self.protocol)
        return self._serial_number

    def _require_connection(self):
        if self._connection is None:
            raise DeviceNotConnectedError()

    def _check_target(self, target: Target):
        if target is ALL:
            return
        if (not isinstance(target, int) or isinstance(target, bool)
                or not 1 <= target <= self._relay_count):
            raise InvalidRelayNumberError(target, self._relay_count)

    def _read_states(self) -> Dict[int, RelayState]:
        report = self._connection.get_feature_report(self.protocol.read_length)
        self._states = decode_status(report, self._relay_count, self.protocol)
        self._states_fresh = True
        logger.debug(f"{self.path} states: {self._states}")
        return self._states

    def _set_state(self, state: RelayState, target: Target):
        self._require_connection()
        self._check_target(target)

        affected = range(1, self._relay_count + 1) if target is ALL else (target,)

        if (self.skip_unchanged and self._states_fresh
                and all(self._states[c] == state for c in affected)):
            self.logger.debug(f"{self.path}: relay {target} already {state.name}, not sending")
            return

        command = encode_set_command(state, target, self.protocol)
        self.logger.debug(f"{self.path}: relay {target} -> {state.name} ({command.hex()})")
        self._connection.send_feature_report(command)

        actual = self._read_states()
        for channel in affected:
            if actual[channel] != state:
                raise RelayStateNotSetError(channel, state)
