#!/usr/bin/env python3
"""
Command Line Interface for PowerQueen LiFePO4 BMS Bluetooth Reader.

Usage:
    pqbms <MAC_ADDRESS> --bms [options]
    pqbms <MAC_ADDRESS> --services [options]

Arguments:
    MAC_ADDRESS     Bluetooth device MAC address (format: XX:XX:XX:XX:XX:XX)

Options:
    --bms                   Retrieve and display battery BMS information as JSON
    --services, -s          List all GATT services and characteristics
    --pair                  Pair with device before communication
    --timeout, -t           Bluetooth timeout in seconds (default: 4)
    --response-timeout, -r  Seconds to wait for each command response (default: 1.0)
    --command, -c           Poll only the named command; repeat for several
    --verbose               Enable detailed logging output

Exit Codes:
    0 - Success (or when using --services)
    1 - Generic error
    2 - Bluetooth or response timeout
    3 - Response frame could not be decoded
    4 - Bleak library or transport error
    6 - Checksum mismatch

Examples:
    # Read BMS information
    pqbms 12:34:56:78:AA:CC --bms

    # Read only telemetry, waiting up to 2 seconds for the answer
    pqbms 12:34:56:78:AA:CC --bms -c GET_BATTERY_INFO -r 2

    # List available services
    pqbms 12:34:56:78:AA:CC --services
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .battery import BatteryInfo
from .commands import PQ_COMMANDS
from .poller import DEFAULT_RESPONSE_TIMEOUT


def commands(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse and validate command-line arguments.

    Returns:
        argparse.Namespace: Parsed arguments with DEVICE_MAC, bms, timeout,
            response_timeout, command, pair, services and verbose.
    """
    parser = argparse.ArgumentParser(
        prog="pqbms",
        description="PowerQueen LiFePO4 BMS Bluetooth Reader - "
        "Read battery information via Bluetooth Low Energy",
        epilog="Example: pqbms 12:34:56:78:AA:CC --bms --timeout 5",
    )
    parser.add_argument(
        "DEVICE_MAC",
        help="Bluetooth device MAC address in format 12:34:56:78:AA:CC",
        type=str,
    )

    parser.add_argument("--bms", help="Get battery BMS info", action="store_true")
    parser.add_argument(
        "-t",
        "--timeout",
        help="Bluetooth timeout in seconds (default: 4)",
        type=float,
        default=4,
    )
    parser.add_argument(
        "-r",
        "--response-timeout",
        help=f"Seconds to wait for each command response "
        f"(default: {DEFAULT_RESPONSE_TIMEOUT})",
        type=float,
        default=DEFAULT_RESPONSE_TIMEOUT,
    )
    parser.add_argument(
        "-c",
        "--command",
        help=f"Command to poll, may be repeated (default: all of "
        f"{', '.join(PQ_COMMANDS.names())})",
        action="append",
        choices=PQ_COMMANDS.names(),
        default=None,
    )
    parser.add_argument(
        "--pair", help="Pair with device before interacting", action="store_true"
    )
    parser.add_argument(
        "-s",
        "--services",
        help="List device GATT services and characteristics",
        action="store_true",
    )
    parser.add_argument("--verbose", help="Verbose logs", action="store_true")

    args = parser.parse_args(argv)
    if not (args.bms or args.services):
        parser.error("one of --bms or --services is required")
    if args.response_timeout <= 0:
        parser.error("--response-timeout must be positive")
    return args


def setup_logging(verbose: bool) -> Optional[logging.Logger]:
    if not verbose:
        return None
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter("%(asctime)s [%(funcName)s] %(message)s")
    handler.setFormatter(formatter)
    logger = logging.getLogger("pqbms")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    return logger


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main entry point for the PowerQueen BMS CLI application.

    Parses arguments, configures logging, then either lists GATT services
    (exit 0) or reads the BMS, prints the JSON document and exits with the
    reader's error_code.
    """
    args = commands(argv)
    logger = setup_logging(args.verbose)

    catalog = PQ_COMMANDS
    if args.command:
        catalog = PQ_COMMANDS.select(dict.fromkeys(args.command))

    battery = BatteryInfo(
        args.DEVICE_MAC,
        pair_device=args.pair,
        timeout=args.timeout,
        response_timeout=args.response_timeout,
        catalog=catalog,
        logger=logger,
    )

    if args.services:
        request = battery.get_request()
        asyncio.run(request.print_services())
        sys.exit(0)

    if args.bms:
        battery.read_bms()
        print(battery.get_json())
        sys.exit(battery.error_code)


if __name__ == "__main__":
    main()
