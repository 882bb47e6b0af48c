"""
ID generation using time-ordered UUIDs

Appropriations, budgets, requests and events all get UUIDv7-style ids, so
sorting by id roughly sorts by creation time - handy when scanning the log.
"""

import secrets
import time


def generate_id() -> str:
    """
    Generate a UUIDv7-like identifier

    Layout: 48-bit Unix millisecond timestamp, version nibble 7, 12 random
    bits, RFC 4122 variant, 62 random bits.
    """
    timestamp_48 = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    rand_a = secrets.randbits(12)
    rand_b = secrets.randbits(62)

    hex_digits = (
        f"{timestamp_48:012x}"
        f"{0x7000 | rand_a:04x}"
        f"{0x8000 | ((rand_b >> 48) & 0x3FFF):04x}"
        f"{rand_b & 0xFFFFFFFFFFFF:012x}"
    )
    return (
        f"{hex_digits[0:8]}-{hex_digits[8:12]}-{hex_digits[12:16]}-"
        f"{hex_digits[16:20]}-{hex_digits[20:32]}"
    )
