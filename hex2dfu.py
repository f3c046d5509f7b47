#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
Convert an Intel HEX file to a DFU firmware image.

The output is the flat image followed by the 16 bytes DFU suffix:

bcdDevice	0xFFFF	wildcard
idProduct	0xFFFF	wildcard
idVendor	0xFFFF	wildcard
bcdDFU	0x0100	stored as 01 00
ucDfuSignature	"UFD"
bLength	16
dwCRC	crc32 of everything before it, little endian

Only a single target is supported, no DfuSe prefix.
"""

import os
import sys
import struct
import argparse
import progressbar

from checksum import crc32
from hex2bin import (
    MAX_IMAGE_SIZE, HexException, debug_print, hex2image)

DFU_VERSION = 0x0100
WILDCARD_ID = 0xFFFF
DFU_SIGNATURE = b"UFD"
DFU_SUFFIX_LENGTH = 16

# everything but dwCRC, see module docstring for the field order
dfu_suffix_struct = struct.Struct(">HHH H 3s B")
dfu_crc_struct = struct.Struct("<I")


class DfuFileException(HexException):
    pass


def dfu_suffix(image):
    """Return the DFU suffix for `image`, CRC included."""
    suffix = dfu_suffix_struct.pack(
        WILDCARD_ID,  # bcdDevice
        WILDCARD_ID,  # idProduct
        WILDCARD_ID,  # idVendor
        DFU_VERSION,
        DFU_SIGNATURE,
        DFU_SUFFIX_LENGTH)
    crc = crc32(suffix, crc32(image))
    debug_print("[DFU] suffix crc {:08x}", crc)
    return suffix + dfu_crc_struct.pack(crc)


def append_dfu_suffix(image):
    """Append the DFU suffix to the bytearray `image`, in place."""
    image += dfu_suffix(image)
    return image


def progress_wrapper(label):
    def _wrap(lines):
        if not lines:
            return iter(lines)
        bar = progressbar.ProgressBar(
            max_value=len(lines),
            widgets=[
                label,
                progressbar.Bar(),
                ' ',
                progressbar.Counter(format='%(value)02d/%(max_value)d'),
                ' ',
                progressbar.ETA()
            ]
        )
        return bar(lines)
    return _wrap


def default_output(filename):
    return os.path.splitext(filename)[0] + ".dfu"


def hex2dfu(filename, output_filename=None, max_size=MAX_IMAGE_SIZE,
            progress=False):
    """Convert `filename` to a DFU file, returns the image size.

    Nothing is written unless the whole conversion succeeded.
    """
    if output_filename is None:
        output_filename = default_output(filename)

    try:
        with open(filename, "rb") as fd:
            data = fd.read()
    except OSError:
        raise DfuFileException("Unable to open {}".format(filename))

    wrap = progress_wrapper("Parse: ") if progress else None
    image = hex2image(data, max_size=max_size, wrap=wrap)
    image_size = len(image)
    print("Image size: {} bytes".format(image_size))

    append_dfu_suffix(image)

    try:
        with open(output_filename, "wb") as fd:
            fd.write(image)
    except OSError:
        raise DfuFileException('Unable to open "{}".'.format(output_filename))
    print('DFU image written to "{}".'.format(output_filename))
    return image_size


def convert(data, max_size=MAX_IMAGE_SIZE):
    """In-memory conversion of HEX file content (str or bytes)."""
    image = hex2image(data, max_size=max_size)
    return bytes(append_dfu_suffix(image))


class ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        print(message)
        self.print_usage(sys.stdout)
        sys.exit(1)


def main(argv=None):
    parser = ArgumentParser(
        prog="ihex2dfu",
        description="Convert an Intel HEX file to a DFU firmware image")
    parser.add_argument("hex_file", help="input Intel hex file")
    parser.add_argument("dfu_file", nargs="?", default=None,
                        help="output DFU file (default: hex_file with .dfu extension)")
    parser.add_argument("--max-size", type=lambda x: int(x, 0),
                        default=MAX_IMAGE_SIZE,
                        help="largest accepted image, default {}".format(MAX_IMAGE_SIZE))
    parser.add_argument("-p", "--progress", action="store_true",
                        help="show a progress bar while parsing")
    args = parser.parse_args(argv)

    try:
        hex2dfu(args.hex_file, args.dfu_file, args.max_size, args.progress)
    except HexException as e:
        print(e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
