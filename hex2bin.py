# -*- coding: utf-8 -*-
"""
Intel HEX reader, rebuilding a flat memory image from the records.

Only the record types needed for simple bootloader images are handled:

REC_DATA	0x00	payload bytes at base address + load offset
REC_EOF	0x01	end of file marker, must be present
REC_EXT_SEGMENT	0x02	base address = 16 bit value << 4

Hex digits must be uppercase: only '0'-'9' and 'A'-'F' give meaningful
values, anything else (lowercase included) silently decodes to garbage
and normally ends up as a checksum mismatch. Existing DFU tooling relies
on that acceptance set, keep it.

Extended segment address records checksum the two bytes of the segment
value, as the Intel HEX format defines. Some older converters sum the
bytes of the shifted base address instead and reject such files.
"""

import os

REC_DATA = 0x00
REC_EOF = 0x01
REC_EXT_SEGMENT = 0x02

# erased flash
FILL_BYTE = 0xFF

# upper bound for the sizing pass
MAX_IMAGE_SIZE = 1024 * 1024 * 100

DEBUG = "DEBUG" in os.environ

if DEBUG:
    def debug_print(x, *largs):
        print(x.format(*largs))
else:
    def debug_print(*largs):
        pass


class HexException(Exception):
    pass


class MissingColon(HexException):
    def __init__(self, line_num):
        self.line_num = line_num
        super(MissingColon, self).__init__(
            "Invalid line {} (missing colon)".format(line_num))


class TruncatedRecord(HexException):
    def __init__(self, line_num):
        self.line_num = line_num
        super(TruncatedRecord, self).__init__(
            "Invalid line {} (record truncated)".format(line_num))


class UnknownRecordType(HexException):
    def __init__(self, rectype, line_num):
        self.rectype = rectype
        self.line_num = line_num
        super(UnknownRecordType, self).__init__(
            "Unknown record type {} on line {}".format(rectype, line_num))


class BadExtendedAddressLength(HexException):
    def __init__(self, line_num, length):
        self.line_num = line_num
        self.length = length
        super(BadExtendedAddressLength, self).__init__(
            "Invalid line {} (bad extended segment address length: {})".format(
                line_num, length))


class ChecksumMismatch(HexException):
    def __init__(self, line_num, stored, computed):
        self.line_num = line_num
        self.stored = stored
        self.computed = computed
        super(ChecksumMismatch, self).__init__(
            "Checksum mismatch on line {} (read {:02X}, calculated {:02X})".format(
                line_num, stored, computed))


class ImageTooLarge(HexException):
    def __init__(self, address):
        self.address = address
        super(ImageTooLarge, self).__init__(
            "Firmware image too large for buffer ({:X})".format(address))


class MissingEndOfFile(HexException):
    def __init__(self):
        super(MissingEndOfFile, self).__init__("End of file marker not found")


class AddressState(object):
    """Running state of one parse pass."""

    def __init__(self):
        self.baseaddr = 0
        self.eof_found = False


def read_base16(rec, offset, num_chars):
    """Read `num_chars` hex digits of `rec` starting at `offset`.

    Uppercase only, no validation: a character above '9' is taken as
    c - 'A' + 10, whatever it is.
    """
    val = 0
    for c in rec[offset:offset + num_chars]:
        num_chars -= 1
        if c <= "9":
            digit = ord(c) - ord("0")
        else:
            digit = ord(c) - ord("A") + 10
        val += digit << (num_chars * 4)
    return val & 0xffffffff


def split_lines(data):
    """Split raw file content into lines, the way fgets() would see them."""
    if isinstance(data, bytes):
        data = data.decode("latin-1")
    lines = data.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def ihex_readrec(rec, lineno, state, limit=None):
    """Decode one line of an Intel HEX file.

    `lineno` is 1-based and only used for error reporting. `state` is the
    AddressState of the running pass, updated by extended segment address
    and end of file records. With `limit`, each data byte address is
    checked against it before the byte is read, raising ImageTooLarge.

    Returns a dict with reclen, loadofs, rectype, data and cksum.
    """
    rec = rec.rstrip("\r\n")
    if not rec.startswith(":"):
        raise MissingColon(lineno)

    ihex = {
        "reclen": None,
        "loadofs": None,
        "rectype": None,
        "data": bytearray(),
        "cksum": None
    }
    rlen = len(rec)
    offset = 1

    def field(num_chars):
        if offset + num_chars > rlen:
            raise TruncatedRecord(lineno)
        return read_base16(rec, offset, num_chars)

    # header
    ihex["reclen"] = field(2) & 0xff
    offset += 2
    ihex["loadofs"] = field(4) & 0xffff
    offset += 4
    ihex["rectype"] = field(2) & 0xff
    offset += 2

    cksum = (
        ihex["reclen"] +
        ((ihex["loadofs"] >> 8) & 0x0ff) +
        (ihex["loadofs"] & 0x0ff) +
        ihex["rectype"])

    if ihex["rectype"] == REC_DATA:
        for j in range(ihex["reclen"]):
            if limit is not None:
                absaddr = state.baseaddr + ihex["loadofs"] + j
                if absaddr >= limit:
                    raise ImageTooLarge(absaddr)
            c = field(2) & 0xff
            ihex["data"].append(c)
            cksum += c
            offset += 2

    elif ihex["rectype"] == REC_EOF:
        # payload, if any, is not read
        pass

    elif ihex["rectype"] == REC_EXT_SEGMENT:
        if ihex["reclen"] != 2:
            raise BadExtendedAddressLength(lineno, ihex["reclen"])
        segment = field(4) & 0xffff
        ihex["data"].append(segment >> 8)
        ihex["data"].append(segment & 0xff)
        cksum += (segment >> 8) + (segment & 0xff)
        offset += 4

    else:
        raise UnknownRecordType(ihex["rectype"], lineno)

    # validate checksum
    ihex["cksum"] = field(2) & 0xff
    rc = -cksum & 0x000000ff
    if rc != ihex["cksum"]:
        raise ChecksumMismatch(lineno, ihex["cksum"], rc)

    # only a fully valid record touches the running state
    if ihex["rectype"] == REC_EOF:
        state.eof_found = True
    elif ihex["rectype"] == REC_EXT_SEGMENT:
        state.baseaddr = segment << 4
        debug_print("[IHEX] line {}: base address {:X}", lineno, state.baseaddr)

    return ihex


def ihex2b(data, buf=None, bufsize=None, max_size=MAX_IMAGE_SIZE):
    """Rebuild the memory image described by the lines of `data`.

    Without `buf` only the size is computed, addresses are checked against
    `max_size`. With `buf`, its first `bufsize` bytes (default: all of it)
    are erased to FILL_BYTE and the data records are written into it,
    addresses are checked against `bufsize`.

    Returns the image size, highest address written + 1.
    """
    if buf is not None:
        if bufsize is None:
            bufsize = len(buf)
        elif bufsize > len(buf):
            raise ValueError("bufsize {} larger than buffer ({})".format(
                bufsize, len(buf)))
        buf[:bufsize] = bytearray([FILL_BYTE]) * bufsize
        limit = bufsize
    else:
        limit = max_size

    state = AddressState()
    maxaddr = 0

    for lineno, line in enumerate(data, 1):
        rec = ihex_readrec(line, lineno, state, limit)
        if rec["rectype"] != REC_DATA:
            continue
        nextaddr = state.baseaddr + rec["loadofs"]
        for i, b in enumerate(rec["data"]):
            absaddr = nextaddr + i
            if buf is not None:
                buf[absaddr] = b
            if absaddr > maxaddr:
                maxaddr = absaddr

    if not state.eof_found:
        raise MissingEndOfFile()

    return maxaddr + 1


def hex2image(data, max_size=MAX_IMAGE_SIZE, wrap=None):
    """Size pass then fill pass, returns the image as a bytearray.

    `wrap`, if given, is applied to the line list before each pass (used
    to hook a progress bar).
    """
    lines = split_lines(data)
    if wrap is None:
        wrap = iter
    size = ihex2b(wrap(lines), max_size=max_size)
    debug_print("[IHEX] image size {}", size)
    buf = bytearray(size)
    ihex2b(wrap(lines), buf)
    return buf


def hex2bin(filename, output_filename):
    with open(filename, "rb") as fd:
        data = fd.read()
    buf = hex2image(data)
    with open(output_filename, "wb") as fd:
        fd.write(buf)
    print("Wrote {} bytes to {}".format(len(buf), output_filename))


if __name__ == "__main__":
    import sys
    try:
        hex2bin(sys.argv[1], sys.argv[2])
    except (HexException, OSError) as e:
        print(e)
        sys.exit(1)
