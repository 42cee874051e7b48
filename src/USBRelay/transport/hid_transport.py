"""
HID transport for USB relay boards.

Talks to the system hidapi library through ctypes. The relay boards are
driven exclusively with feature reports, so only enumeration, open/close
and get/send feature report are bound.

The library is loaded on first use, so importing this module works on
machines without hidapi (tests use the mock transport instead).
"""

import ctypes
import logging
import threading
from ctypes import (
    POINTER,
    Structure,
    c_char_p,
    c_int,
    c_size_t,
    c_ubyte,
    c_ushort,
    c_void_p,
    c_wchar_p,
)
from typing import Dict, List, Optional

from ..errors import TransportError

logger = logging.getLogger(__name__)

HIDAPI_LIBRARY_NAMES = [
    "libhidapi-hidraw.so.0",
    "libhidapi-hidraw.so",
    "libhidapi-libusb.so.0",
    "libhidapi-libusb.so",
    "libhidapi.so.0",
    "libhidapi.so",
    "libhidapi.dylib",
    "hidapi.dll",
]


class _hid_device_info(Structure):
    """C structure for hid_device_info from hidapi."""

    pass


_hid_device_info._fields_ = [
    ("path", c_char_p),
    ("vendor_id", c_ushort),
    ("product_id", c_ushort),
    ("serial_number", c_wchar_p),
    ("release_number", c_ushort),
    ("manufacturer_string", c_wchar_p),
    ("product_string", c_wchar_p),
    ("usage_page", c_ushort),
    ("usage", c_ushort),
    ("interface_number", c_int),
    ("next", POINTER(_hid_device_info)),
]

_hidapi = None
_hidapi_lock = threading.Lock()


def _load_hidapi():
    """Load libhidapi and declare the function signatures we use."""
    global _hidapi
    with _hidapi_lock:
        if _hidapi is not None:
            return _hidapi

        lib = None
        for lib_name in HIDAPI_LIBRARY_NAMES:
            try:
                lib = ctypes.CDLL(lib_name)
                break
            except OSError:
                continue

        if lib is None:
            raise TransportError(
                "Could not load libhidapi. Please install hidapi (hidraw or libusb backend)."
            )

        lib.hid_init.restype = c_int
        lib.hid_init.argtypes = []

        lib.hid_enumerate.restype = POINTER(_hid_device_info)
        lib.hid_enumerate.argtypes = [c_ushort, c_ushort]

        lib.hid_free_enumeration.restype = None
        lib.hid_free_enumeration.argtypes = [POINTER(_hid_device_info)]

        lib.hid_open_path.restype = c_void_p
        lib.hid_open_path.argtypes = [c_char_p]

        lib.hid_close.restype = None
        lib.hid_close.argtypes = [c_void_p]

        lib.hid_get_feature_report.restype = c_int
        lib.hid_get_feature_report.argtypes = [c_void_p, POINTER(c_ubyte), c_size_t]

        lib.hid_send_feature_report.restype = c_int
        lib.hid_send_feature_report.argtypes = [c_void_p, POINTER(c_ubyte), c_size_t]

        lib.hid_error.restype = c_wchar_p
        lib.hid_error.argtypes = [c_void_p]

        if lib.hid_init() != 0:
            raise TransportError("hid_init() failed")

        logger.debug(f"Loaded hidapi from {lib._name}")
        _hidapi = lib
        return _hidapi


class HIDConnection:
    """
    One open HID device handle.

    Not thread-safe on its own; the owning RelayBoard serializes access.
    """

    def __init__(self, lib, handle: c_void_p, path: str):
        self._lib = lib
        self._device: Optional[c_void_p] = handle
        self.path = path

    @property
    def is_open(self) -> bool:
        return self._device is not None

    def _last_error(self) -> str:
        try:
            message = self._lib.hid_error(self._device)
        except Exception:
            return "unknown error"
        return message or "unknown error"

    def _require_open(self):
        if not self._device:
            raise TransportError(f"HID device {self.path} is closed")

    def get_feature_report(self, length: int, report_id: int = 0) -> bytes:
        """
        Read a feature report.

        Args:
            length: Buffer size in bytes, including the report ID byte
            report_id: Report number placed in the first byte of the buffer

        Returns:
            The bytes the device returned
        """
        self._require_open()
        buffer = (c_ubyte * length)()
        buffer[0] = report_id
        result = self._lib.hid_get_feature_report(self._device, buffer, length)
        if result < 0:
            raise TransportError(
                f"get feature report failed on {self.path}: {self._last_error()}", code=result
            )
        return bytes(buffer[:result])

    def send_feature_report(self, data: bytes) -> int:
        """
        Send a feature report. The first byte of ``data`` is the report ID.

        Returns:
            Number of bytes written
        """
        self._require_open()
        buffer = (c_ubyte * len(data))(*data)
        result = self._lib.hid_send_feature_report(self._device, buffer, len(data))
        if result < 0:
            raise TransportError(
                f"send feature report failed on {self.path}: {self._last_error()}", code=result
            )
        return result

    def close(self):
        """Close the HID device."""
        if self._device:
            self._lib.hid_close(self._device)
            self._device = None


class HIDTransport:
    """
    Entry point to the OS HID layer: enumerate devices and open them by path.
    """

    def __init__(self, lib=None):
        self._lib = lib

    @property
    def lib(self):
        if self._lib is None:
            self._lib = _load_hidapi()
        return self._lib

    def open(self, path) -> HIDConnection:
        """
        Open a HID device by path.

        Raises:
            TransportError: if the device cannot be opened
        """
        if isinstance(path, str):
            path_bytes = path.encode("utf-8")
        else:
            path_bytes = bytes(path)
            path = path_bytes.decode("utf-8", errors="replace")

        handle = self.lib.hid_open_path(path_bytes)
        if not handle:
            raise TransportError(f"could not open HID device {path}")
        return HIDConnection(self.lib, handle, path)

    def enumerate(self, vid: int, pid: int) -> List[Dict]:
        """
        Enumerate HID devices matching the given VID/PID.

        Args:
            vid: Vendor ID (0 for any)
            pid: Product ID (0 for any)

        Returns:
            List of device dictionaries with path, vendor_id, product_id
            and product_string
        """
        device_list = []
        device_enumeration = self.lib.hid_enumerate(vid, pid)
        if not device_enumeration:
            return device_list

        try:
            current_device = device_enumeration
            while current_device:
                info = current_device.contents
                path = info.path
                if isinstance(path, bytes):
                    path = path.decode("utf-8")
                device_list.append(
                    {
                        "path": path,
                        "vendor_id": info.vendor_id,
                        "product_id": info.product_id,
                        "product_string": info.product_string or "",
                        "interface_number": info.interface_number,
                    }
                )
                current_device = info.next
        finally:
            self.lib.hid_free_enumeration(device_enumeration)

        return device_list
