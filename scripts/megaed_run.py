#!/usr/bin/env python3
"""
ROM Runner for the Mega Everdrive X7

This script uploads a game image to the cartridge over its USB serial
port and tells the cartridge to boot it.

Usage:
    python3 megaed_run.py -p /dev/ttyUSB0 game.md
    python3 megaed_run.py -p /dev/ttyUSB0 -m sms game.sms

Requirements:
    pip install pyserial
"""

import argparse
import sys
from pathlib import Path

from x7_errors import ConfigurationError, TransportError, X7Error
from x7_protocol import (
    BLOCK_SIZE,
    DEFAULT_BAUD_RATE,
    DEFAULT_PORT,
    DEFAULT_READ_TIMEOUT_MS,
    DEFAULT_RUN_MODE,
    MAX_GAME_SIZE,
    RUN_COMMANDS,
    EverdriveX7,
    SessionConfig,
)
from x7_serial import SerialTransport

HEADER_OFFSET = 0x100
HEADER_MAGIC = b"SEGA"


def load_rom(rom_file):
    """Read the raw rom file from disk"""
    rom_path = Path(rom_file)
    if not rom_path.is_file():
        raise ConfigurationError(f"Rom file not found: {rom_path}")

    try:
        game_data = rom_path.read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Loading game data failed: {e}") from e

    if not game_data:
        raise ConfigurationError("Rom file is empty")
    return game_data


def pad_image(game_data):
    """Pad with zeros so the data ends on a full block"""
    if len(game_data) % BLOCK_SIZE:
        pad_size = BLOCK_SIZE - (len(game_data) % BLOCK_SIZE)
        game_data += b"\x00" * pad_size
    return game_data


def check_game_size(game_data):
    if len(game_data) > MAX_GAME_SIZE:
        raise ConfigurationError(
            f"Game data exceeds maximum size of {MAX_GAME_SIZE} bytes ({len(game_data)} bytes)"
        )


def check_rom_header(game_data):
    """
    Sanity check the Mega Drive header

    Returns:
        True if 'SEGA' is found at offset 0x100
    """
    if game_data[HEADER_OFFSET:HEADER_OFFSET + len(HEADER_MAGIC)] != HEADER_MAGIC:
        print(f"Warning: ROM may be corrupt: expected string 'SEGA' at offset 0x{HEADER_OFFSET:x}")
        return False
    return True


def prepare_image(rom_file, verbose=False):
    """
    Load, pad and check a rom file

    Args:
        rom_file: path to the rom
        verbose: print padding details

    Returns:
        Game data ready for upload
    """
    game_data = load_rom(rom_file)
    print(f"Read {len(game_data)} bytes from rom file")

    padded = pad_image(game_data)
    if verbose and len(padded) != len(game_data):
        print(f"Padded game data to {len(padded)} bytes (added {len(padded) - len(game_data)} bytes)")

    check_game_size(padded)
    check_rom_header(padded)
    return padded


def build_parser():
    parser = argparse.ArgumentParser(
        prog="megaed-run",
        description="Upload and run a rom on the Mega Everdrive X7",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Run modes:
  md   Mega Drive
  sms  Master System
  cd   Sega CD
  os   OS/menu
  m10  Master System 10-in-1
  ssf  SSF mapper

Examples:
  megaed-run -p /dev/ttyUSB0 sonic.md
  megaed-run -p COM3 -m sms -v alexkidd.sms
        """
    )

    parser.add_argument("rom", help="Rom file to upload")
    parser.add_argument("-p", "--port", "--serialPort", dest="port", default=DEFAULT_PORT,
                        help=f"Serial port for the Mega Everdrive X7 (default: {DEFAULT_PORT})")
    parser.add_argument("-b", "--baud", "--baudRate", dest="baud_rate", type=int,
                        default=DEFAULT_BAUD_RATE,
                        help=f"Serial baud rate (default: {DEFAULT_BAUD_RATE})")
    parser.add_argument("-t", "--read-timeout", "--readTimeout", dest="read_timeout_ms", type=int,
                        default=DEFAULT_READ_TIMEOUT_MS,
                        help=f"Serial read timeout in msec (default: {DEFAULT_READ_TIMEOUT_MS})")
    parser.add_argument("-m", "--run-mode", "--runMode", dest="run_mode", default=DEFAULT_RUN_MODE,
                        help=f"Run mode for the rom: {'|'.join(RUN_COMMANDS)} (default: {DEFAULT_RUN_MODE})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    return parser


def main(argv=None):
    """
    Parse arguments and run the upload session

    Returns:
        0 on success, 1 on a device or cable fault, 2 on a configuration error
    """
    args = build_parser().parse_args(argv)

    try:
        config = SessionConfig(
            port=args.port,
            baud_rate=args.baud_rate,
            read_timeout_ms=args.read_timeout_ms,
            run_mode=args.run_mode,
            verbose=args.verbose,
        )
        game_data = prepare_image(args.rom, args.verbose)
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 2

    print(f"Connecting to {config.port} at {config.baud_rate} baud...", end="", flush=True)
    try:
        transport = SerialTransport.open(config)
    except TransportError as e:
        print("ERROR")
        print(f"Error: {e}")
        return 1
    print("OK")

    try:
        result = EverdriveX7(transport, config).run(game_data)
    except ConfigurationError as e:
        print(f"\nError: {e}")
        return 2
    except X7Error as e:
        print(f"\nError: {e}")
        return 1
    finally:
        transport.close()
        print("Serial port closed.")

    if args.verbose:
        print(f"Sent {result.blocks_sent} blocks ({result.bytes_sent} bytes), md5 {result.sent_digest.hex()}")
    print("✓ Game started!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
