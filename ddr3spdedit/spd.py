# SPDX-License-Identifier: AGPL-3.0-or-later
"""
Parser and editor for DDR3 SPD images.
"""

from collections import OrderedDict
from typing import Any, Mapping, Optional, Union

from ddr3spdedit import chksum
from ddr3spdedit import codec
from ddr3spdedit import strct
from ddr3spdedit import xmp as pxmp
from ddr3spdedit.codec import Timing, Voltage
from ddr3spdedit.errors import FormatError, RangeError, SaveError, SizeError


DDR3_SPD_LEN = 128
DDR3_SPD_FULL_LEN = 256
CRC_COVERAGE = 0x75
XMP_OFFSET = 0xb0
_PART_NUMBER_LEN = 18


class BytesPartNumber(strct.BaseFormatterReader):
    """
    Format/read module part number, padded with spaces.
    """

    def format(self, value: Any) -> str:
        """
        Convert value into string.

        :param value: Value.
        :return: Value as string.
        """

        assert len(value) == _PART_NUMBER_LEN, \
            f'Wrong length of part number: {len(value)} != {_PART_NUMBER_LEN}'
        return value.decode('ascii', errors='replace').rstrip()

    def read(self, str_value: str) -> Any:
        """
        Convert string to value.

        :param str_value: Value as string.
        :return: Value.
        """

        value = str_value.encode('ascii')
        assert len(value) <= _PART_NUMBER_LEN, \
            f'Part number longer than {_PART_NUMBER_LEN}: {value!r} ({len(value)} bytes)'
        return value.ljust(_PART_NUMBER_LEN)


_DDR3_SPD_DESCRIPTION = (
    # JESD21-C Annex K: Serial Presence Detect for DDR3 SDRAM Modules.
    #
    # 0x00 | [7] CRC coverage, [6:4] SPD bytes total, [3:0] SPD bytes used
    ('B', 'spd_bytes_used', strct.IntBin(8)),
    # 0x01 | SPD revision
    ('B', 'spd_revision', strct.IntHex(2)),
    # 0x02 | DRAM device type, 0x0b is DDR3 SDRAM
    ('B', 'dram_device_type', strct.IntHex(2)),
    # 0x03 | [7:4] reserved, [3:0] module type
    ('B', 'module_type', strct.IntBin(8)),
    # 0x04 | [7] reserved, [6:4] bank address bits, [3:0] total SDRAM capacity
    ('B', 'sdram_density_and_banks', strct.IntBin(8)),
    # 0x05 | [7:6] reserved, [5:3] row address bits, [2:0] column address bits
    ('B', 'sdram_addressing', strct.IntBin(8)),
    # 0x06 | [7:3] reserved, [2] 1.25 V operable, [1] 1.35 V operable, [0] NOT 1.5 V operable
    ('B', 'module_nominal_voltage', strct.IntBin(8)),
    # 0x07 | [5:3] number of ranks, [2:0] SDRAM device width
    ('B', 'module_organization', strct.IntBin(8)),
    # 0x08 | [4:3] bus width extension, [2:0] primary bus width
    ('B', 'module_memory_bus_width', strct.IntBin(8)),
    # 0x09 | [7:4] FTB dividend, [3:0] FTB divisor
    ('B', 'fine_timebase', strct.IntHex(2)),
    # 0x0a-0x0b | Medium timebase dividend and divisor, 1/8 ns
    ('B', 'medium_timebase_dividend', None),
    ('B', 'medium_timebase_divisor', None),
    # 0x0c | Minimum SDRAM cycle time, tCKmin, in MTB
    ('B', 'tCKmin', None),
    # 0x0d | Reserved
    ('B', 'reserved_0', strct.IntHex(2)),
    # 0x0e | CAS latencies supported, bit 0 is CL 4 ... bit 7 is CL 11
    ('B', 'cas_latencies_supported_lsb', strct.IntBin(8)),
    # 0x0f | [7] reserved, bit 0 is CL 12 ... bit 6 is CL 18
    ('B', 'cas_latencies_supported_msb', strct.IntBin(8)),
    # 0x10 | Minimum CAS latency time, tAAmin
    ('B', 'tAAmin', None),
    # 0x11 | Minimum write recovery time, tWRmin
    ('B', 'tWRmin', None),
    # 0x12 | Minimum RAS to CAS delay time, tRCDmin
    ('B', 'tRCDmin', None),
    # 0x13 | Minimum row active to row active delay time, tRRDmin
    ('B', 'tRRDmin', None),
    # 0x14 | Minimum row precharge delay time, tRPmin
    ('B', 'tRPmin', None),
    # 0x15 | [7:4] tRCmin upper nibble, [3:0] tRASmin upper nibble
    ('B', 'upper_nibbles_tRAS_tRC', strct.IntHex(2)),
    # 0x16 | Minimum active to precharge delay time, tRASmin least significant byte
    ('B', 'tRASmin_lsb', None),
    # 0x17 | Minimum active to active/refresh delay time, tRCmin least significant byte
    ('B', 'tRCmin_lsb', None),
    # 0x18-0x19 | Minimum refresh recovery delay time, tRFCmin
    ('H', 'tRFCmin', None),
    # 0x1a | Minimum internal write to read command delay time, tWTRmin
    ('B', 'tWTRmin', None),
    # 0x1b | Minimum internal read to precharge command delay time, tRTPmin
    ('B', 'tRTPmin', None),
    # 0x1c | [7:4] reserved, [3:0] tFAWmin upper nibble
    ('B', 'upper_nibble_tFAW', strct.IntHex(2)),
    # 0x1d | Minimum four activate window delay time, tFAWmin least significant byte
    ('B', 'tFAWmin_lsb', None),
    # 0x1e | SDRAM optional features
    ('B', 'sdram_optional_features', strct.IntBin(8)),
    # 0x1f | SDRAM thermal and refresh options
    ('B', 'sdram_thermal_and_refresh_options', strct.IntBin(8)),
    # 0x20 | Module thermal sensor
    ('B', 'module_thermal_sensor', strct.IntBin(8)),
    # 0x21 | SDRAM device type
    ('B', 'sdram_device_type', strct.IntBin(8)),
    # 0x22 | Fine offset for tCKmin, signed, in ps
    ('b', 'tCKmin_correction', None),
    # 0x23 | Fine offset for tAAmin
    ('b', 'tAAmin_correction', None),
    # 0x24 | Fine offset for tRCDmin
    ('b', 'tRCDmin_correction', None),
    # 0x25 | Fine offset for tRPmin
    ('b', 'tRPmin_correction', None),
    # 0x26 | Fine offset for tRCmin
    ('b', 'tRCmin_correction', None),
    # 0x27-0x3b | Reserved
    ('21s', 'reserved_1', strct.BytesHex()),
    # 0x3c-0x74 | Module type specific section
    ('57s', 'module_specific_section', strct.BytesHex()),
    # 0x75-0x76 | Module manufacturer ID code, see JEP-106
    ('H', 'module_manufacturer_id_code', strct.IntHex(4)),
    # 0x77 | Module manufacturing location
    ('B', 'module_manufacturing_location', strct.IntHex(2)),
    # 0x78-0x79 | Module manufacturing date, year and week in BCD
    ('2s', 'module_manufacturing_date', strct.BytesHex()),
    # 0x7a-0x7d | Module serial number
    ('4s', 'module_serial_number', strct.BytesHex()),
    # 0x7e-0x7f | CRC16 over bytes 0x00-0x74, little-endian
    ('H', 'crc', strct.IntHex(4)),
)
DDR3_SPD = strct.Struct('DDR3 Serial Presence Detect',
                        _DDR3_SPD_DESCRIPTION,
                        expected_len=DDR3_SPD_LEN)

_DDR3_SPD_UPPER_DESCRIPTION = (
    # 0x80-0x91 | Module part number, ASCII, padded with 0x20
    ('18s', 'module_part_number', BytesPartNumber()),
    # 0x92-0x93 | Module revision code
    ('2s', 'module_revision_code', strct.BytesHex()),
    # 0x94-0x95 | DRAM manufacturer ID code
    ('H', 'dram_manufacturer_id_code', strct.IntHex(4)),
    # 0x96-0xaf | Manufacturer's specific data
    ('26s', 'manufacturers_specific_data', strct.BytesHex()),
    # 0xb0-0xff | Open for customer use, XMP lives here
    ('80s', 'customer_use', strct.BytesHex()),
)
DDR3_SPD_FULL = strct.Struct('DDR3 Serial Presence Detect (256 bytes)',
                             _DDR3_SPD_DESCRIPTION + _DDR3_SPD_UPPER_DESCRIPTION,
                             expected_len=DDR3_SPD_FULL_LEN)

_VOLTAGE_BITS = OrderedDict((
    (Voltage.V1_25, (2, False)),
    (Voltage.V1_35, (1, False)),
    (Voltage.V1_50, (0, True)),
))

_SPD_TIMINGS = OrderedDict((
    (Timing.CL, codec.SplitField('tAAmin', correction='tAAmin_correction')),
    (Timing.RCD, codec.SplitField('tRCDmin', correction='tRCDmin_correction')),
    (Timing.RP, codec.SplitField('tRPmin', correction='tRPmin_correction')),
    (Timing.RAS, codec.SplitField('tRASmin_lsb', 12, 'upper_nibbles_tRAS_tRC', 0)),
    (Timing.RC, codec.SplitField('tRCmin_lsb', 12, 'upper_nibbles_tRAS_tRC', 4, 'tRCmin_correction')),
    (Timing.RFC, codec.SplitField('tRFCmin', 16)),
    (Timing.RRD, codec.SplitField('tRRDmin')),
    (Timing.FAW, codec.SplitField('tFAWmin_lsb', 12, 'upper_nibble_tFAW', 0)),
    (Timing.WR, codec.SplitField('tWRmin')),
    (Timing.WTR, codec.SplitField('tWTRmin')),
    (Timing.RTP, codec.SplitField('tRTPmin')),
))
_SPD_CLOCK = codec.SplitField('tCKmin', correction='tCKmin_correction')
_SPD_CLS = codec.ClBitmap('cas_latencies_supported_lsb', 'cas_latencies_supported_msb')

# Clock periods that 1/8 ns + 1 ps units can not express exactly, keyed by period in ps as encoded.
_EXACT_TCK_NS = {
    938: 0.9375,  # DDR3-2133, 1066.67 MHz
    1071: 1000 * 3 / 2800,  # DDR3-1866, 933.33 MHz
}


def _tck_ns(fields: Mapping[str, Any]) -> float:
    tck_ns = codec.fixed_point_to_ns(_SPD_CLOCK.get(fields), _SPD_CLOCK.get_correction(fields))
    return _EXACT_TCK_NS.get(codec.round_half_up(1000 * tck_ns), tck_ns)


def _timing_field(timing: Union[Timing, str]) -> codec.SplitField:
    timing = Timing.parse(timing)
    if timing not in _SPD_TIMINGS:
        raise RangeError(f'Timing {timing.value} is not stored in primary SPD')
    return _SPD_TIMINGS[timing]


def _calc_crc(spd_bin: bytes) -> int:
    return chksum.crc16_xmodem(spd_bin[:CRC_COVERAGE])


class SpdImage:
    """
    DDR3 SPD image: 128 byte primary structure with timings, optionally followed by XMP.

    Edits are kept in the unpacked field table; the image bytes are rebuilt, with a fresh checksum, only by
    to_bytes() and save().
    """

    def __init__(self, data: bytes) -> None:
        if len(data) < DDR3_SPD_LEN:
            raise SizeError(f'Expected at least {DDR3_SPD_LEN} bytes of SPD, got {len(data)} bytes')

        self._data = bytes(data)
        self._spd = DDR3_SPD.unpack(self._data[:DDR3_SPD_LEN])

        self._xmp: Optional[pxmp.XmpBlock] = None
        try:
            self._xmp = pxmp.XmpBlock(self._data[XMP_OFFSET:XMP_OFFSET + pxmp.XMP_LEN])
        except (SizeError, FormatError) as err:
            print(f'[!] No XMP found: {err}')

    @classmethod
    def load(cls, path: str) -> 'SpdImage':
        """
        Read SPD image from file.

        :param path: Path to binary SPD dump.
        :return: SPD image.
        """

        with open(path, 'rb') as spd_f:
            return cls(spd_f.read())

    @property
    def xmp(self) -> Optional[pxmp.XmpBlock]:
        """
        XMP block, None when the image has none.

        :return: XMP block.
        """

        return self._xmp

    @property
    def fields(self) -> OrderedDict[str, Any]:
        """
        Copy of raw primary fields, including pending edits.

        :return: Ordered dict of fields.
        """

        return OrderedDict(self._spd)

    @property
    def data(self) -> bytes:
        """
        Image bytes as last loaded or saved.

        :return: Binary image.
        """

        return self._data

    @property
    def crc(self) -> int:
        """
        Checksum stored in the image.

        :return: CRC16.
        """

        return int.from_bytes(self._data[0x7e:0x80], 'little')

    @property
    def crc_valid(self) -> bool:
        """
        Whether stored checksum matches image bytes.

        :return: True if valid.
        """

        return self.crc == _calc_crc(self._data)

    def get_voltage(self, voltage: Union[Voltage, str]) -> bool:
        """
        Check whether module is operable at voltage.

        :param voltage: Voltage or its name, e.g. "1.35v".
        :return: Whether operable.
        """

        bit, inverted = _VOLTAGE_BITS[Voltage.parse(voltage)]
        return codec.get_flag(self._spd['module_nominal_voltage'], bit, inverted)

    def set_voltage(self, voltage: Union[Voltage, str], operable: bool) -> None:
        """
        Mark module as operable at voltage or not.

        :param voltage: Voltage or its name.
        :param operable: Whether operable.
        :return: None.
        """

        bit, inverted = _VOLTAGE_BITS[Voltage.parse(voltage)]
        self._spd['module_nominal_voltage'] = \
            codec.set_flag(self._spd['module_nominal_voltage'], bit, operable, inverted)

    @property
    def voltages(self) -> OrderedDict[Voltage, bool]:
        """
        All voltage flags.

        :return: Ordered dict from voltage to flag.
        """

        return OrderedDict((voltage, self.get_voltage(voltage)) for voltage in _VOLTAGE_BITS)

    @property
    def supported_cls(self) -> OrderedDict[int, bool]:
        """
        CAS latencies supported.

        :return: Ordered dict from CL (4..18) to support flag.
        """

        return _SPD_CLS.decode(self._spd)

    def is_cl_supported(self, cl: int) -> bool:
        """
        Check CL support bit.

        :param cl: CAS latency, 4..18.
        :return: Whether supported.
        """

        return _SPD_CLS.get(self._spd, cl)

    def set_cl_supported(self, cl: int, supported: bool) -> None:
        """
        Set CL support bit.

        :param cl: CAS latency, 4..18.
        :param supported: Whether supported.
        :return: None.
        """

        _SPD_CLS.set(self._spd, cl, supported)

    @property
    def tck_ns(self) -> float:
        """
        Clock period, exact for the clocks the fixed point encoding can not express.

        :return: Time in ns.
        """

        return _tck_ns(self._spd)

    @property
    def frequency(self) -> float:
        """
        Clock frequency, zero when tCKmin is zero (e.g. erased EEPROM).

        :return: Frequency in MHz.
        """

        tck_ns = self.tck_ns
        if tck_ns <= 0:
            return 0.0
        return 1000 / tck_ns

    @frequency.setter
    def frequency(self, frequency: float) -> None:
        if frequency <= 0:
            raise RangeError(f'Frequency must be positive: {frequency}')

        mtb, ftb = codec.ns_to_fixed_point(1000 / frequency)
        if mtb < 1:
            raise RangeError(f'Frequency too high: {frequency} MHz')
        fields = OrderedDict(self._spd)
        _SPD_CLOCK.set(fields, mtb)
        _SPD_CLOCK.set_correction(fields, ftb)
        self._spd = fields

    def get_timing(self, timing: Union[Timing, str]) -> int:
        """
        Get timing in clock ticks.

        :param timing: Timing or its name, e.g. "tRCD".
        :return: Tick count, rounded to nearest, zero when tCKmin is zero.
        """

        time_ns = self.get_timing_ns(timing)
        tck_ns = self.tck_ns
        if tck_ns <= 0:
            return 0
        return codec.round_half_up(time_ns / tck_ns)

    def get_timing_ns(self, timing: Union[Timing, str]) -> float:
        """
        Get timing as stored, in ns.

        :param timing: Timing or its name.
        :return: Time in ns.
        """

        field = _timing_field(timing)
        return codec.fixed_point_to_ns(field.get(self._spd), field.get_correction(self._spd))

    @property
    def timings(self) -> OrderedDict[Timing, int]:
        """
        All timings in clock ticks.

        :return: Ordered dict from timing to tick count.
        """

        return OrderedDict((timing, self.get_timing(timing)) for timing in _SPD_TIMINGS)

    def set_timing(self, timing: Union[Timing, str], ticks: int) -> None:
        """
        Set timing in clock ticks. Setting tCL also marks it as supported.

        :param timing: Timing or its name.
        :param ticks: Tick count, at least 1.
        :return: None.
        """

        self.set_timings({timing: ticks})

    def set_timings(self, timings: Mapping[Union[Timing, str], int]) -> None:
        """
        Set several timings, either all or none of them.

        :param timings: Mapping from timing to tick count.
        :return: None.
        """

        fields = OrderedDict(self._spd)
        tck_ns = _tck_ns(fields)
        if timings and tck_ns <= 0:
            raise RangeError(f'Can not set timings with tCKmin {tck_ns} ns, set frequency first')
        for timing, ticks in timings.items():
            field = _timing_field(timing)
            codec.check_ticks(ticks)
            if field is _SPD_TIMINGS[Timing.CL]:
                codec.check_cl(ticks)

            mtb, ftb = codec.ns_to_fixed_point(ticks * tck_ns)
            field.set(fields, mtb)
            field.set_correction(fields, ftb)

            if field is _SPD_TIMINGS[Timing.CL]:
                _SPD_CLS.set(fields, ticks, True)
        self._spd = fields

    def to_bytes(self) -> bytes:
        """
        Serialize image with pending edits and a fresh checksum. Does not change the loaded image.

        :return: Binary image.
        """

        primary = DDR3_SPD.pack(self._spd)
        fields = OrderedDict(self._spd)
        fields['crc'] = _calc_crc(primary)
        data = DDR3_SPD.pack(fields) + self._data[DDR3_SPD_LEN:]

        if self._xmp is not None:
            data = data[:XMP_OFFSET] + self._xmp.to_bytes() + data[XMP_OFFSET + pxmp.XMP_LEN:]

        assert len(data) == len(self._data), \
            f'Logic error: image size changed ({len(data)} != {len(self._data)})'
        return data

    def save(self, path: Optional[str] = None) -> bytes:
        """
        Serialize image, write it to file and make it the loaded image.

        Nothing changes if writing fails.

        :param path: Where to write, None to only serialize.
        :return: Binary image.
        """

        data = self.to_bytes()
        if path is not None:
            try:
                with open(path, 'wb') as spd_f:
                    spd_f.write(data)
            except OSError as err:
                raise SaveError(err.errno, f'Unable to write SPD to "{path}": {err.strerror}') from err

        self._data = data
        self._spd = DDR3_SPD.unpack(data[:DDR3_SPD_LEN])
        return data


def make_test_spd(xmp: Optional[bytes] = None) -> bytes:
    """
    Build DDR3-1333 9-9-9-24 1.5 V SPD with valid checksum, for tests.

    :param xmp: XMP block for a 256 byte image, None for a 128 byte image.
    :return: Binary SPD.
    """

    fields = DDR3_SPD.unpack(bytes(DDR3_SPD_LEN))
    fields.update(
        spd_bytes_used=0x92,
        spd_revision=0x11,
        dram_device_type=0x0b,
        module_type=0x02,
        sdram_density_and_banks=0x03,
        sdram_addressing=0x19,
        module_nominal_voltage=0b0000_0010,
        module_organization=0x01,
        module_memory_bus_width=0x03,
        fine_timebase=0x11,
        medium_timebase_dividend=1,
        medium_timebase_divisor=8,
        tCKmin=12,
        cas_latencies_supported_lsb=0b0111_1110,
        cas_latencies_supported_msb=0b1000_0000,
        tAAmin=108,
        tWRmin=120,
        tRCDmin=108,
        tRRDmin=48,
        tRPmin=108,
        upper_nibbles_tRAS_tRC=0x11,
        tRASmin_lsb=0x20,
        tRCmin_lsb=0x89,
        tRFCmin=0x0500,
        tWTRmin=60,
        tRTPmin=60,
        upper_nibble_tFAW=0xf1,
        tFAWmin_lsb=0x40,
        sdram_optional_features=0x83,
        sdram_thermal_and_refresh_options=0x05,
        tCKmin_correction=0,
        tAAmin_correction=0,
        tRCmin_correction=0,
        module_manufacturer_id_code=0xce80,
        module_manufacturing_date=b'\x12\x34',
        module_serial_number=b'\xde\xad\xbe\xef',
    )
    primary = DDR3_SPD.pack(fields)
    fields['crc'] = _calc_crc(primary)
    data = DDR3_SPD.pack(fields)

    if xmp is not None:
        upper = DDR3_SPD_FULL.unpack(data + bytes(DDR3_SPD_FULL_LEN - DDR3_SPD_LEN))
        upper['module_part_number'] = b'TEST-1333-9-9-9   '
        upper['customer_use'] = xmp.ljust(80, b'\xff')
        data = DDR3_SPD_FULL.pack(upper)
    return data


def test_crc_placement() -> None:
    """
    Checksum is stored low byte first at 0x7e.

    :return: None.
    """

    data = make_test_spd()
    crc = chksum.crc16_xmodem(data[:0x75])
    assert data[0x7e] == crc & 0xff
    assert data[0x7f] == crc >> 8
    assert SpdImage(data).crc_valid


def test_spd_unmodified_bytes() -> None:
    """
    Decode and serialize without edits gives the input back, checksum refreshed.

    :return: None.
    """

    for data in (make_test_spd(), make_test_spd(pxmp.make_test_xmp())):
        assert SpdImage(data).to_bytes() == data

    data = bytearray(make_test_spd(pxmp.make_test_xmp()))
    data[0x7e:0x80] = b'\0\0'
    new_data = SpdImage(bytes(data)).to_bytes()
    assert new_data[:0x7e] == data[:0x7e]
    assert new_data[0x80:] == data[0x80:]
    assert int.from_bytes(new_data[0x7e:0x80], 'little') == chksum.crc16_xmodem(bytes(data[:0x75]))


def test_spd_decode() -> None:
    """
    Decode known SPD.

    :return: None.
    """

    spd = SpdImage(make_test_spd())
    assert spd.xmp is None
    assert round(spd.frequency, 2) == 666.67
    assert spd.tck_ns == 1.5
    assert dict(spd.voltages) == {'1.25v': False, '1.35v': True, '1.50v': True}
    assert [cl for cl, supported in spd.supported_cls.items() if supported] == [5, 6, 7, 8, 9, 10]
    assert dict(spd.timings) == {
        'tCL': 9, 'tRCD': 9, 'tRP': 9, 'tRAS': 24, 'tRC': 33, 'tRFC': 107, 'tRRD': 4, 'tFAW': 27,
        'tWR': 10, 'tWTR': 5, 'tRTP': 5,
    }
    assert spd.get_timing_ns('tRC') == 49.125


def test_spd_too_short() -> None:
    """
    SPD needs at least 128 bytes.

    :return: None.
    """

    try:
        SpdImage(make_test_spd()[:127])
    except SizeError:
        # As expected.
        pass
    else:
        assert False, 'No error!'


def test_spd_voltage() -> None:
    """
    Test voltage flags, including inverted 1.5 V.

    :return: None.
    """

    spd = SpdImage(make_test_spd())
    spd.set_voltage('1.50v', False)
    assert spd.fields['module_nominal_voltage'] & 1 == 1
    assert not spd.get_voltage(Voltage.V1_50)

    spd.set_voltage(Voltage.V1_50, True)
    assert spd.fields['module_nominal_voltage'] & 1 == 0
    assert spd.get_voltage('1.50v')

    spd.set_voltage('1.25v', True)
    assert spd.save()[0x06] == 0b0000_0110

    try:
        spd.set_voltage('1.20v', True)
    except RangeError:
        # As expected, unknown voltage.
        pass
    else:
        assert False, 'No error!'


def test_spd_cl_supported() -> None:
    """
    Test CL bitmap accessors.

    :return: None.
    """

    spd = SpdImage(make_test_spd())
    spd.set_cl_supported(11, True)
    assert spd.is_cl_supported(11)
    spd.set_cl_supported(18, True)
    assert spd.to_bytes()[0x0f] == 0b1100_0000

    before = spd.supported_cls
    for cl in (3, 19):
        try:
            spd.set_cl_supported(cl, True)
        except RangeError:
            # As expected, out of domain.
            pass
        else:
            assert False, 'No error!'
    assert spd.supported_cls == before


def test_spd_frequency_and_timing() -> None:
    """
    Setting frequency then tCL gives back the same tick count.

    :return: None.
    """

    spd = SpdImage(make_test_spd())
    spd.frequency = 800.0
    assert spd.frequency == 800.0
    spd.set_timing('tCL', 10)
    assert spd.timings['tCL'] == 10
    assert spd.is_cl_supported(10)
    assert spd.fields['tAAmin'] == 100
    assert spd.fields['tAAmin_correction'] == 0

    for timing in Timing:
        if timing in (Timing.CL, Timing.CWL, Timing.REFI):
            continue
        spd.set_timing(timing, 11)
        assert spd.get_timing(timing) == 11, timing


def test_spd_exact_clocks() -> None:
    """
    Clocks near 1066.67 and 933.33 MHz use exact periods.

    :return: None.
    """

    spd = SpdImage(make_test_spd())
    spd.frequency = 3200 / 3
    assert spd.fields['tCKmin'] == 7
    assert spd.fields['tCKmin_correction'] == 63
    assert spd.tck_ns == 0.9375
    assert round(spd.frequency, 2) == 1066.67

    for ticks in range(4, 19):
        spd.set_timing(Timing.CL, ticks)
        assert spd.get_timing(Timing.CL) == ticks

    # JEDEC encoding of DDR3-1866: 9 MTB - 54 ps.
    data = bytearray(make_test_spd())
    data[0x0c] = 9
    data[0x22] = 0xca
    spd = SpdImage(bytes(data))
    assert spd.tck_ns == 1000 * 3 / 2800
    assert round(spd.frequency, 2) == 933.33


def test_spd_set_timing_errors() -> None:
    """
    Failed updates leave image untouched.

    :return: None.
    """

    data = make_test_spd()
    spd = SpdImage(data)
    bad_updates = (
        {'tCL': 0},
        {'tRCD': 0},
        {'tCL': 19},
        {'tCWL': 5},
        {'tXYZ': 5},
        {'tRRD': 200},
        {'tRAS': 3000},
        {'tRP': 10, 'tRCD': 0},
    )
    for timings in bad_updates:
        try:
            spd.set_timings(timings)
        except RangeError:
            # As expected.
            pass
        else:
            assert False, f'No error for {timings}!'
    assert spd.to_bytes() == data

    for frequency in (0, -800, 10):
        try:
            spd.frequency = frequency
        except RangeError:
            # As expected.
            pass
        else:
            assert False, f'No error for {frequency}!'
    assert spd.to_bytes() == data


def test_spd_bad_xmp() -> None:
    """
    Bad XMP magic means no XMP, not an error.

    :return: None.
    """

    xmp_bin = bytearray(pxmp.make_test_xmp())
    xmp_bin[1] = 0x4b
    data = make_test_spd(bytes(xmp_bin))
    spd = SpdImage(data)
    assert spd.xmp is None
    assert spd.to_bytes() == data


def test_spd_xmp() -> None:
    """
    XMP edits end up at 0xb0 without touching the checksum range.

    :return: None.
    """

    data = make_test_spd(pxmp.make_test_xmp())
    spd = SpdImage(data)
    assert spd.xmp is not None
    assert spd.xmp.profile(1).frequency == 800.0

    spd.xmp.profile(1).voltage = 150
    new_data = spd.save()
    assert new_data[:0x80] == data[:0x80]
    assert new_data[0xb0 + 9] == 0b0_01_0101_0
    assert SpdImage(new_data).xmp.profile(1).voltage == 150


def test_spd_save(tmp_path: Any) -> None:
    """
    Save writes file and commits, failed save changes nothing.

    :param tmp_path: Temporary directory.
    :return: None.
    """

    data = make_test_spd()
    spd = SpdImage(data)
    spd.set_timing('tRCD', 10)

    try:
        spd.save(str(tmp_path / 'missing' / 'spd.bin'))
    except SaveError:
        # As expected, no such directory.
        pass
    else:
        assert False, 'No error!'
    assert spd.data == data
    assert spd.get_timing('tRCD') == 10

    path = str(tmp_path / 'spd.bin')
    new_data = spd.save(path)
    with open(path, 'rb') as spd_f:
        assert spd_f.read() == new_data
    assert spd.data == new_data
    assert spd.crc_valid

    new_spd = SpdImage.load(path)
    assert new_spd.get_timing(Timing.RCD) == 10
    assert new_spd.to_bytes() == new_data


def test_spd_json() -> None:
    """
    Test JSON serialization and deserialization of raw fields.

    :return: None.
    """

    data = make_test_spd(pxmp.make_test_xmp())
    spd = DDR3_SPD_FULL.unpack(data)
    json = DDR3_SPD_FULL.json_dumps(spd)
    assert '"module_part_number": "TEST-1333-9-9-9"' in json
    new_spd = DDR3_SPD_FULL.json_loads(json)
    assert new_spd == spd
    assert DDR3_SPD_FULL.pack(new_spd) == data


def test_spd_blank() -> None:
    """
    Erased image has zero clock: no frequency, no ticks, timing edits rejected until frequency is set.

    :return: None.
    """

    data = bytes(DDR3_SPD_LEN)
    spd = SpdImage(data)
    assert spd.tck_ns == 0.0
    assert spd.frequency == 0.0
    assert set(spd.timings.values()) == {0}

    try:
        spd.set_timing(Timing.RCD, 5)
    except RangeError:
        # As expected, no clock to count ticks of.
        pass
    else:
        assert False, 'No error!'
    spd.set_timings({})
    assert spd.to_bytes() == data

    spd.frequency = 800.0
    spd.set_timing(Timing.RCD, 5)
    assert spd.get_timing(Timing.RCD) == 5
    assert spd.fields['tRCDmin'] == 50
