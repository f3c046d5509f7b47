"""Helpers to write Intel HEX records in tests."""


def record(rectype, address, payload=b""):
    body = bytearray([len(payload), (address >> 8) & 0xFF, address & 0xFF, rectype])
    body += bytearray(payload)
    return ":{}{:02X}".format(body.hex().upper(), -sum(body) & 0xFF)


def data(address, payload):
    return record(0x00, address, payload)


def segment(value):
    return record(0x02, 0, bytes([value >> 8, value & 0xFF]))


EOF_RECORD = ":00000001FF"
