class USBVendorIDs:
    """
    USB Vendor IDs for known relay boards.
    """
    # 5824 = voti.nl, shared by V-USB based devices
    USB_VID_DCTTECH = 0x16C0

class USBProductIDs:
    """
    USB Product IDs for known relay boards.
    """
    # obdev's shared PID for HIDs
    USB_PID_USBRELAY = 0x05DF

# Product name is the prefix followed by the relay count, e.g. "USBRelay4"
RELAY_NAME_PREFIX = "USBRelay"
RELAY_VENDOR_NAME = "www.dcttech.com"

from .devices.relay_board import RelayBoard

g_products = [
    # dcttech USBRelay1 .. USBRelay8
    (USBVendorIDs.USB_VID_DCTTECH, USBProductIDs.USB_PID_USBRELAY, RelayBoard)
]
