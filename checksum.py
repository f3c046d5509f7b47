# -*- coding: utf-8 -*-
"""
CRC-32 as used by the DFU suffix.

Reflected polynomial 0xEDB88320, initial value and final xor 0xFFFFFFFF,
same table as zlib / PNG. crc32(b"123456789") == 0xCBF43926
"""

CRC32_POLY = 0xEDB88320


def _make_table():
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ CRC32_POLY
            else:
                crc >>= 1
        table.append(crc)
    return table


CRC32_TABLE = _make_table()


def crc32(data, crc=0):
    """Compute the CRC-32 of `data`.

    `crc` is a previous result to continue from, so that
    crc32(b, crc32(a)) == crc32(a + b).
    """
    crc ^= 0xffffffff
    for b in bytearray(data):
        crc = CRC32_TABLE[(crc ^ b) & 0xff] ^ (crc >> 8)
    return crc ^ 0xffffffff
