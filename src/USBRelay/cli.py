#!/usr/bin/env python3
"""
USBRelay command line interface.

Serial numbers are case sensitive. Use "all" as the relay number to switch
every relay of a board at once.
"""
import argparse
import logging
import os
import subprocess
import sys

from .config_loader import ConfigLoader, ConfigValidationError
from .device_manager import DeviceManager
from .errors import NoDeviceFoundError, USBRelayError
from .product_ids import USBProductIDs, USBVendorIDs
from .protocol import parse_target

DEFAULT_CONFIG_FILE = 'usbrelay.yml'
UDEV_RULE_FILE = '/etc/udev/rules.d/70-usbrelay-hid.rules'

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="usbrelay",
        description="Control USB HID relay boards",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    usbrelay list              List all boards
    usbrelay on ABCDE 2        Switch relay 2 of board ABCDE on
    usbrelay off ABCDE all     Switch every relay of board ABCDE off
    usbrelay toggle bench 1    Toggle relay 1 of the board aliased 'bench'
    usbrelay setserial ABCDE X1    Rename board ABCDE to X1
        """
    )
    parser.add_argument("-c", "--config", help=f"YAML configuration file (default: ./{DEFAULT_CONFIG_FILE})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    list_parser = subparsers.add_parser("list", help="List all available devices")
    list_parser.add_argument("-s", "--simple", action="store_true",
                             help="Print serial:relays:vendor:product per line")

    for name, help_text in (("on", "Set a relay's state to ON"),
                            ("off", "Set a relay's state to OFF"),
                            ("toggle", "Toggle a relay's state")):
        relay_parser = subparsers.add_parser(name, help=help_text)
        relay_parser.add_argument("serial", help="Serial number or alias of the board")
        relay_parser.add_argument("relay", help="Relay number or 'all'")

    state_parser = subparsers.add_parser("state", help="Show the state of every relay")
    state_parser.add_argument("serial", help="Serial number or alias of the board")

    serial_parser = subparsers.add_parser("setserial", help="Change a board's serial number (max 5 ASCII characters)")
    serial_parser.add_argument("serial", help="Current serial number or alias of the board")
    serial_parser.add_argument("new_serial", help="New serial number")

    subparsers.add_parser("setudev", help="Install a udev rule to run without root (Linux only, requires root)")
    subparsers.add_parser("watch", help="Report boards as they are plugged in or removed")

    return parser


def load_config(path):
    """
    Load the configuration file. Without an explicit path a missing
    default file is not an error.
    """
    explicit = path is not None
    path = path or DEFAULT_CONFIG_FILE
    config_loader = ConfigLoader(path)
    if explicit or os.path.exists(path):
        config_loader.load()
    return config_loader


def cmd_list(manager, args):
    relay_boards = manager.enumerate()
    if args.simple:
        for board in relay_boards:
            print(str(board))
        return

    print(f"{'Serial':<9}{'Relays':<9}{'Vendor':<9}{'Product':<9}")
    for board in relay_boards:
        serial_number, vendor_id, product_id, relay_count = board.info()
        print(f"{serial_number:<9}{relay_count:<9}{vendor_id:<9}{product_id:<9}")


def cmd_relay(manager, config_loader, args):
    try:
        target = parse_target(args.relay)
    except ValueError:
        raise USBRelayError(f"invalid relay number {args.relay!r}, use a number or 'all'")

    board = manager.get_device_by_serial_number(config_loader.resolve_serial(args.serial))
    board.open(verify_state=args.command == "toggle")
    try:
        if args.command == "on":
            board.on(target)
        elif args.command == "off":
            board.off(target)
        else:
            board.toggle(target)
        logger.debug(f"{board}: states {board.cached_states}")
    finally:
        board.close()


def cmd_state(manager, config_loader, args):
    board = manager.get_device_by_serial_number(config_loader.resolve_serial(args.serial))
    with board:
        states = board.states()
    for channel, state in states.items():
        print(f"{channel}\t{state.name}")


def cmd_setserial(manager, config_loader, args):
    board = manager.get_device_by_serial_number(config_loader.resolve_serial(args.serial))
    with board:
        board.set_serial_number(args.new_serial)


def cmd_setudev():
    if not sys.platform.startswith("linux"):
        raise USBRelayError("udev rules only available on linux")
    if os.path.exists(UDEV_RULE_FILE):
        raise USBRelayError(f"udev rule already exists: {UDEV_RULE_FILE}")

    rule = (
        f'SUBSYSTEM=="usb", ATTRS{{idVendor}}=="{USBVendorIDs.USB_VID_DCTTECH:04x}", '
        f'ATTRS{{idProduct}}=="{USBProductIDs.USB_PID_USBRELAY:04x}", TAG+="uaccess"\n'
    )
    with open(UDEV_RULE_FILE, 'w') as f:
        f.write(rule)

    result = subprocess.run(
        ["sh", "-c", "udevadm control --reload-rules && udevadm trigger"],
        capture_output=True, text=True,
    )
    if result.returncode != 0:
        raise USBRelayError(f"udevadm failed: {result.stdout}{result.stderr}")
    print("Disconnect and reconnect the device to activate the rule!")


def cmd_watch(manager):
    try:
        manager.enumerate()
    except NoDeviceFoundError:
        pass
    for board in manager.relay_boards:
        print(f"present\t{board}")

    manager.listen(
        on_add=lambda board: print(f"added\t{board}", flush=True),
        on_remove=lambda board: print(f"removed\t{board}", flush=True),
    )


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        config_loader = load_config(args.config)
    except FileNotFoundError as e:
        logging.basicConfig(level=logging.INFO)
        logging.error(f"{e}")
        return 1
    except ConfigValidationError as e:
        logging.basicConfig(level=logging.INFO)
        logging.error(f"Configuration Error: {e}")
        return 1

    logging.basicConfig(level=logging.DEBUG if args.verbose else config_loader.log_level)

    if args.command == "setudev":
        try:
            cmd_setudev()
        except (USBRelayError, OSError) as e:
            logging.error(f"{e}")
            return 1
        return 0

    manager = DeviceManager(protocol=config_loader.protocol(),
                            skip_unchanged=config_loader.skip_unchanged)
    try:
        if args.command == "list":
            cmd_list(manager, args)
        elif args.command in ("on", "off", "toggle"):
            cmd_relay(manager, config_loader, args)
        elif args.command == "state":
            cmd_state(manager, config_loader, args)
        elif args.command == "setserial":
            cmd_setserial(manager, config_loader, args)
        elif args.command == "watch":
            cmd_watch(manager)
    except NoDeviceFoundError as e:
        logging.error(f"{e}, maybe a bad serial number or try running as root (or run 'usbrelay setudev')")
        return 1
    except USBRelayError as e:
        logging.error(f"{e}")
        return 1
    except KeyboardInterrupt:
        logging.info("Shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
