# SPDX-License-Identifier: AGPL-3.0-or-later
"""
Checksum used by DDR3 SPD.
"""

import os


def crc16_xmodem(data: bytes) -> int:
    """
    Calculate CRC16-CCITT, XMODEM variant (polynomial 0x1021, initial value 0, MSB first).

    JEDEC uses it for the base configuration section of DDR3 SPD[1].

    [1]: https://www.jedec.org/standards-documents/docs/spd-1118

    :param data: Binary data.
    :return: Checksum.
    """

    crc = 0
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            crc <<= 1
            if crc & 0x10000:
                crc ^= 0x1021
        crc &= 0xffff
    return crc


def test_crc16_xmodem() -> None:
    """
    Test crc16_xmodem() against the standard check value.

    :return: None.
    """

    assert crc16_xmodem(b'123456789') == 0x31c3
    assert crc16_xmodem(b'') == 0
    assert crc16_xmodem(b'\0' * 117) == 0


def test_crc16_xmodem_appended() -> None:
    """
    CRC of data followed by its own big-endian CRC is zero.

    :return: None.
    """

    data = os.urandom(117)
    crc = crc16_xmodem(data)
    assert crc16_xmodem(data + crc.to_bytes(2, 'big')) == 0
