# SPDX-License-Identifier: AGPL-3.0-or-later
"""
Bit field and fixed point encodings shared by the SPD and XMP structures.

All helpers operate on ordered dicts produced by strct.Struct.unpack(), so bits that are not modeled here
stay exactly as they were read.
"""

from collections import OrderedDict
import enum
import math
from typing import Any, MutableMapping, NamedTuple, Optional, Union

from ddr3spdedit.errors import RangeError


CL_MIN = 4
CL_MAX = 18
CL_VALUES = tuple(range(CL_MIN, CL_MAX + 1))
_CL_MSB_FIRST = 12

# Primary SPD MTB is fixed at 1/8 ns, FTB at 1 ps.
MTB_PER_NS = 8
FTB_PER_NS = 1000


class Timing(str, enum.Enum):
    """
    Timing parameters, in the order the editor lists them.
    """

    CL = 'tCL'
    RCD = 'tRCD'
    RP = 'tRP'
    RAS = 'tRAS'
    RC = 'tRC'
    RFC = 'tRFC'
    RRD = 'tRRD'
    FAW = 'tFAW'
    WR = 'tWR'
    WTR = 'tWTR'
    RTP = 'tRTP'
    CWL = 'tCWL'
    REFI = 'tREFI'

    @classmethod
    def parse(cls, name: Union['Timing', str]) -> 'Timing':
        """
        Get timing by name.

        :param name: Timing or its name, e.g. "tCL".
        :return: Timing.
        """

        return _parse_enum(cls, name, 'timing')


class Voltage(str, enum.Enum):
    """
    Module nominal voltages of DDR3 SPD byte 0x06.
    """

    V1_25 = '1.25v'
    V1_35 = '1.35v'
    V1_50 = '1.50v'

    @classmethod
    def parse(cls, name: Union['Voltage', str]) -> 'Voltage':
        """
        Get voltage by name.

        :param name: Voltage or its name, e.g. "1.35v".
        :return: Voltage.
        """

        return _parse_enum(cls, name, 'voltage')


def _parse_enum(enum_cls: Any, name: Any, what: str) -> Any:
    if isinstance(name, enum_cls):
        return name
    try:
        return enum_cls(name)
    except ValueError:
        raise RangeError(
            f'Unknown {what}: {name!r} (expected one of {", ".join(m.value for m in enum_cls)})') from None


def get_bits(value: int, high: int, low: int) -> int:
    """
    Extract bits [high:low] of value.

    :param value: Integer.
    :param high: Most significant bit of the field.
    :param low: Least significant bit of the field.
    :return: Field value.
    """

    return (value >> low) & ((1 << (high - low + 1)) - 1)


def set_bits(value: int, high: int, low: int, field: int) -> int:
    """
    Replace bits [high:low] of value, keep all other bits.

    :param value: Integer.
    :param high: Most significant bit of the field.
    :param low: Least significant bit of the field.
    :param field: New field value.
    :return: New integer.
    """

    mask = (1 << (high - low + 1)) - 1
    assert 0 <= field <= mask, \
        f'Value {field} does not fit into bits [{high}:{low}]'
    return (value & ~(mask << low)) | (field << low)


def get_flag(value: int, bit: int, inverted: bool = False) -> bool:
    """
    Read single bit as boolean.

    :param value: Integer.
    :param bit: Bit number.
    :param inverted: Flag is true when the bit is clear.
    :return: Flag.
    """

    return bool(get_bits(value, bit, bit)) != inverted


def set_flag(value: int, bit: int, flag: bool, inverted: bool = False) -> int:
    """
    Write single bit from boolean.

    :param value: Integer.
    :param bit: Bit number.
    :param flag: Flag.
    :param inverted: Flag is true when the bit is clear.
    :return: New integer.
    """

    return set_bits(value, bit, bit, int(bool(flag) != inverted))


def round_half_up(value: float) -> int:
    """
    Round to nearest integer, halves away from zero.

    :param value: Number.
    :return: Integer.
    """

    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def fixed_point_to_ns(mtb: int, ftb: int = 0) -> float:
    """
    Time from medium timebase count and fine correction.

    :param mtb: Count of 1/8 ns units.
    :param ftb: Correction in ps, signed.
    :return: Time in ns.
    """

    return mtb / MTB_PER_NS + ftb / FTB_PER_NS


def ns_to_fixed_point(time_ns: float) -> tuple[int, int]:
    """
    Split time into medium timebase count (rounded down) and fine correction.

    :param time_ns: Time in ns.
    :return: MTB count and correction in ps.
    """

    # Float noise, e.g. 1000 / (3200 / 3) gives 0.9374999999999999.
    scaled = round(time_ns * MTB_PER_NS, 6)
    mtb = int(math.floor(scaled))
    ftb = round_half_up(FTB_PER_NS * (scaled - mtb) / MTB_PER_NS)
    return mtb, ftb


def decode_decimal_voltage(value: int) -> int:
    """
    Decode XMP voltage byte: [6:5] volts, [4:1] tenths, [0] extra 0.05 V.

    :param value: Voltage byte.
    :return: Voltage in centivolts.
    """

    return get_bits(value, 0, 0) * 5 + get_bits(value, 4, 1) * 10 + get_bits(value, 6, 5) * 100


def encode_decimal_voltage(centivolts: int, value: int) -> int:
    """
    Encode voltage into XMP voltage byte, keeping bit 7.

    :param centivolts: Voltage in centivolts, multiple of 5, below 4 V.
    :param value: Previous voltage byte.
    :return: New voltage byte.
    """

    if not 0 <= centivolts < 400 or centivolts % 5 != 0:
        raise RangeError(f'Voltage can not be encoded: {centivolts / 100:.2f} V')

    value = set_bits(value, 0, 0, 1 if centivolts % 10 == 5 else 0)
    value = set_bits(value, 4, 1, centivolts // 10 % 10)
    return set_bits(value, 6, 5, centivolts // 100)


def check_ticks(ticks: Any) -> int:
    """
    Validate timing tick count.

    :param ticks: Tick count.
    :return: Same value.
    """

    if isinstance(ticks, bool) or not isinstance(ticks, int) or ticks < 1:
        raise RangeError(f'Tick count must be a positive integer: {ticks!r}')
    return ticks


def check_cl(cl: Any) -> int:
    """
    Validate CAS latency value.

    :param cl: CAS latency in ticks.
    :return: Same value.
    """

    if isinstance(cl, bool) or not isinstance(cl, int) or cl not in CL_VALUES:
        raise RangeError(f'Unsupported CL: {cl!r} (must be {CL_MIN}..{CL_MAX})')
    return cl


class ClBitmap(NamedTuple):
    """
    CAS latencies supported: bit i of the first byte is CL 4+i, bit i of the second byte is CL 12+i.
    """

    lsb: str
    msb: str

    def _position(self, cl: int) -> tuple[str, int]:
        check_cl(cl)
        if cl < _CL_MSB_FIRST:
            return self.lsb, cl - CL_MIN
        return self.msb, cl - _CL_MSB_FIRST

    def get(self, fields: MutableMapping[str, Any], cl: int) -> bool:
        """
        Check whether CL is marked as supported.

        :param fields: Struct dict.
        :param cl: CAS latency.
        :return: Whether supported.
        """

        field_name, bit = self._position(cl)
        return get_flag(fields[field_name], bit)

    def set(self, fields: MutableMapping[str, Any], cl: int, supported: bool) -> None:
        """
        Mark CL as supported or not.

        :param fields: Struct dict.
        :param cl: CAS latency.
        :param supported: Whether supported.
        :return: None.
        """

        field_name, bit = self._position(cl)
        fields[field_name] = set_flag(fields[field_name], bit, supported)

    def decode(self, fields: MutableMapping[str, Any]) -> OrderedDict[int, bool]:
        """
        Decode whole bitmap.

        :param fields: Struct dict.
        :return: Ordered dict from CL to support flag.
        """

        return OrderedDict((cl, self.get(fields, cl)) for cl in CL_VALUES)


class SplitField(NamedTuple):
    """
    Medium timebase count stored as a low byte (or a whole little-endian word) plus an optional upper nibble
    living in a byte shared with another field. Some SPD timings also have a fine correction byte.
    """

    name: str
    bits: int = 8
    nibble: Optional[str] = None
    shift: int = 0
    correction: Optional[str] = None

    def get(self, fields: MutableMapping[str, Any]) -> int:
        """
        Read MTB count.

        :param fields: Struct dict.
        :return: MTB count.
        """

        value = fields[self.name]
        if self.nibble is not None:
            value |= get_bits(fields[self.nibble], self.shift + 3, self.shift) << 8
        return value

    def set(self, fields: MutableMapping[str, Any], value: int) -> None:
        """
        Write MTB count, the other nibble of the shared byte is kept.

        :param fields: Struct dict.
        :param value: MTB count.
        :return: None.
        """

        if not 0 <= value < (1 << self.bits):
            raise RangeError(f'Value {value} does not fit into {self.bits} bits of {self.name}')

        if self.nibble is None:
            fields[self.name] = value
        else:
            fields[self.name] = value & 0xff
            fields[self.nibble] = set_bits(fields[self.nibble], self.shift + 3, self.shift, value >> 8)

    def get_correction(self, fields: MutableMapping[str, Any]) -> int:
        """
        Read fine correction, zero for fields without one.

        :param fields: Struct dict.
        :return: Correction in ps.
        """

        return 0 if self.correction is None else fields[self.correction]

    def set_correction(self, fields: MutableMapping[str, Any], correction: int) -> None:
        """
        Write fine correction, ignored for fields without one.

        :param fields: Struct dict.
        :param correction: Correction in ps.
        :return: None.
        """

        if self.correction is None:
            return
        if not -128 <= correction <= 127:
            raise RangeError(f'Correction {correction} ps does not fit into {self.correction}')
        fields[self.correction] = correction


def test_bits() -> None:
    """
    Test get_bits() and set_bits().

    :return: None.
    """

    assert get_bits(0b1011_0110, 6, 5) == 0b01
    assert get_bits(0b1011_0110, 4, 1) == 0b1011
    assert set_bits(0b1111_1111, 4, 1, 0) == 0b1110_0001
    assert set_bits(0, 7, 4, 0xa) == 0xa0


def test_flags() -> None:
    """
    Test normal and inverted flags.

    :return: None.
    """

    assert get_flag(0b100, 2)
    assert not get_flag(0b100, 1)
    assert get_flag(0b110, 0, inverted=True)
    assert not get_flag(0b111, 0, inverted=True)
    assert set_flag(0b111, 0, True, inverted=True) == 0b110
    assert set_flag(0b110, 0, False, inverted=True) == 0b111
    assert set_flag(0b000, 2, True) == 0b100


def test_round_half_up() -> None:
    """
    Test round_half_up().

    :return: None.
    """

    assert round_half_up(62.5) == 63
    assert round_half_up(2.5) == 3
    assert round_half_up(2.4999) == 2
    assert round_half_up(-2.5) == -3
    assert round_half_up(0.0) == 0


def test_fixed_point() -> None:
    """
    Test fixed_point_to_ns() and ns_to_fixed_point().

    :return: None.
    """

    assert fixed_point_to_ns(10) == 1.25
    assert fixed_point_to_ns(7, 63) == 0.875 + 0.063
    assert fixed_point_to_ns(9, -54) == 1.125 - 0.054
    assert ns_to_fixed_point(1.25) == (10, 0)
    assert ns_to_fixed_point(12.5) == (100, 0)
    assert ns_to_fixed_point(0.9375) == (7, 63)
    assert ns_to_fixed_point(1000 / (3200 / 3)) == (7, 63)
    assert ns_to_fixed_point(1.5) == (12, 0)


def test_decimal_voltage() -> None:
    """
    Test XMP voltage encoding.

    :return: None.
    """

    assert decode_decimal_voltage(0b0_01_0101_1) == 155
    assert decode_decimal_voltage(0b0_01_0110_1) == 165
    assert decode_decimal_voltage(0b0_01_0011_0) == 130
    assert encode_decimal_voltage(165, 0) == 0b0_01_0110_1
    assert encode_decimal_voltage(150, 0b1000_0000) == 0b1_01_0101_0
    for centivolts in range(0, 400, 5):
        assert decode_decimal_voltage(encode_decimal_voltage(centivolts, 0)) == centivolts

    for centivolts in (-5, 152, 400):
        try:
            encode_decimal_voltage(centivolts, 0)
        except RangeError:
            # As expected, not encodable.
            pass
        else:
            assert False, 'No error!'


def test_cl_bitmap() -> None:
    """
    Test ClBitmap offsets and validation.

    :return: None.
    """

    bitmap = ClBitmap('lsb', 'msb')
    fields = {'lsb': 0b0000_0001, 'msb': 0b1100_0000}
    cls = bitmap.decode(fields)
    assert list(cls.keys()) == list(range(4, 19))
    assert cls[4] and not cls[5] and cls[18] and not cls[12]

    bitmap.set(fields, 11, True)
    bitmap.set(fields, 12, True)
    bitmap.set(fields, 18, False)
    assert fields == {'lsb': 0b1000_0001, 'msb': 0b1000_0001}

    for cl in (3, 19, '11', True):
        try:
            bitmap.set(fields, cl, True)
        except RangeError:
            # As expected, out of domain.
            pass
        else:
            assert False, 'No error!'
    assert fields == {'lsb': 0b1000_0001, 'msb': 0b1000_0001}


def test_split_field() -> None:
    """
    Test that split fields share one byte without clobbering each other.

    :return: None.
    """

    ras = SplitField('ras_lsb', 12, 'upper', 0)
    rc = SplitField('rc_lsb', 12, 'upper', 4)
    fields = {'upper': 0x21, 'ras_lsb': 0x2c, 'rc_lsb': 0x50}
    assert ras.get(fields) == 0x12c
    assert rc.get(fields) == 0x250

    ras.set(fields, 0xfab)
    assert fields == {'upper': 0x2f, 'ras_lsb': 0xab, 'rc_lsb': 0x50}
    assert rc.get(fields) == 0x250

    try:
        rc.set(fields, 0x1000)
    except RangeError:
        # As expected, too wide.
        pass
    else:
        assert False, 'No error!'
    assert fields == {'upper': 0x2f, 'ras_lsb': 0xab, 'rc_lsb': 0x50}


def test_enum_parse() -> None:
    """
    Test name lookup of timings and voltages.

    :return: None.
    """

    assert Timing.parse('tCL') is Timing.CL
    assert Timing.parse(Timing.REFI) is Timing.REFI
    assert Voltage.parse('1.50v') is Voltage.V1_50
    assert {Timing.CL: 1}['tCL'] == 1

    for parse, name in ((Timing.parse, 'tXYZ'), (Voltage.parse, '1.20v')):
        try:
            parse(name)
        except RangeError:
            # As expected, unknown name.
            pass
        else:
            assert False, 'No error!'
