# SPDX-License-Identifier: AGPL-3.0-or-later
"""
Parser for Intel Extreme Memory Profile (XMP 1.x) block of DDR3 SPD.
"""

from collections import OrderedDict
from typing import Any, Mapping, NamedTuple, Optional, Union

from ddr3spdedit import codec
from ddr3spdedit import strct
from ddr3spdedit.codec import Timing
from ddr3spdedit.errors import FormatError, RangeError, SizeError


XMP_LEN = 79
XMP_PROFILE_LEN = 35
XMP_MAGIC = bytes.fromhex('0c4a')
XMP_PROFILES = (1, 2)


_XMP_PROFILE_DESCRIPTION = (
    # Intel XMP 1.2 for DDR3, offsets relative to profile start (SPD byte 185 for profile 1, 220 for profile 2).
    #
    #  0 | [7] reserved, [6:5] volts, [4:1] tenths of volt, [0] +0.05 V
    ('B', 'module_vdd_voltage_level', strct.IntBitFieldStruct([
        ('reserved', 1),
        ('units', 2),
        ('tenths', 4),
        ('twentieth', 1),
    ])),
    #  1 | Minimum SDRAM cycle time, tCKmin, in profile MTB
    ('B', 'tCKmin', None),
    #  2 | Minimum CAS latency time, tAAmin
    ('B', 'tAAmin', None),
    #  3 | CAS latencies supported, bit 0 is CL 4 ... bit 7 is CL 11
    ('B', 'cas_latencies_supported_lsb', strct.IntBin(8)),
    #  4 | [7] reserved, bit 0 is CL 12 ... bit 6 is CL 18
    ('B', 'cas_latencies_supported_msb', strct.IntBin(8)),
    #  5 | Minimum CAS write latency time, tCWLmin
    ('B', 'tCWLmin', None),
    #  6 | Minimum row precharge delay time, tRPmin
    ('B', 'tRPmin', None),
    #  7 | Minimum RAS to CAS delay time, tRCDmin
    ('B', 'tRCDmin', None),
    #  8 | Minimum write recovery time, tWRmin
    ('B', 'tWRmin', None),
    #  9 | [7:4] tRCmin upper nibble, [3:0] tRASmin upper nibble
    ('B', 'upper_nibbles_tRAS_tRC', strct.IntHex(2)),
    # 10 | Minimum active to precharge delay time, tRASmin least significant byte
    ('B', 'tRASmin_lsb', None),
    # 11 | Minimum active to active/refresh delay time, tRCmin least significant byte
    ('B', 'tRCmin_lsb', None),
    # 12-13 | Maximum average periodic refresh interval, tREFI
    ('H', 'tREFImax', None),
    # 14-15 | Minimum refresh recovery delay time, tRFCmin
    ('H', 'tRFCmin', None),
    # 16 | Minimum internal read to precharge command delay time, tRTPmin
    ('B', 'tRTPmin', None),
    # 17 | Minimum row active to row active delay time, tRRDmin
    ('B', 'tRRDmin', None),
    # 18 | [7:4] reserved, [3:0] tFAWmin upper nibble
    ('B', 'upper_nibble_tFAW', strct.IntHex(2)),
    # 19 | Minimum four activate window delay time, tFAWmin least significant byte
    ('B', 'tFAWmin_lsb', None),
    # 20 | Minimum internal write to read command delay time, tWTRmin
    ('B', 'tWTRmin', None),
    # 21 | Write to read / read to write command turnaround time adjustment
    ('B', 'turnaround_adjustment', strct.IntBin(8)),
    # 22 | Back to back command turnaround time adjustment
    ('B', 'back_to_back_adjustment', strct.IntBin(8)),
    # 23 | System CMD rate mode
    ('B', 'system_cmd_rate_mode', None),
    # 24 | SDRAM auto self refresh performance
    ('B', 'asr_performance', strct.IntHex(2)),
    # 25-33 | Reserved
    ('9s', 'reserved', strct.BytesHex()),
    # 34 | Vendor personality code
    ('B', 'vendor_personality_code', strct.IntHex(2)),
)
XMP_PROFILE = strct.Struct('XMP Profile', _XMP_PROFILE_DESCRIPTION, expected_len=XMP_PROFILE_LEN)

_XMP_DESCRIPTION = (
    # Offsets relative to XMP start (SPD byte 176).
    #
    # 0-1 | XMP ID string, 0x0c 0x4a
    ('2s', 'xmp_id', strct.BytesHex()),
    # 2 | [7:6] reserved, [5:4] profile 2 DIMMs per channel - 1, [3:2] profile 1 DIMMs per channel - 1,
    #   | [1] profile 2 enabled, [0] profile 1 enabled
    ('B', 'xmp_org_and_config', strct.IntBitFieldStruct([
        ('reserved', 2),
        ('profile_2_dimms_per_channel', 2),
        ('profile_1_dimms_per_channel', 2),
        ('profile_2_enabled', 1),
        ('profile_1_enabled', 1),
    ])),
    # 3 | XMP revision, [7:4] major, [3:0] minor
    ('B', 'xmp_revision', strct.IntHex(2)),
    # 4-5 | Profile 1 medium timebase, dividend / divisor ns
    ('B', 'profile_1_mtb_dividend', None),
    ('B', 'profile_1_mtb_divisor', None),
    # 6-7 | Profile 2 medium timebase
    ('B', 'profile_2_mtb_dividend', None),
    ('B', 'profile_2_mtb_divisor', None),
    # 8 | Reserved
    ('B', 'reserved', strct.IntHex(2)),
    # 9-43 | Profile 1
    ('35s', 'profile_1', strct.BytesHex()),
    # 44-78 | Profile 2
    ('35s', 'profile_2', strct.BytesHex()),
)
XMP = strct.Struct('Intel Extreme Memory Profile', _XMP_DESCRIPTION, expected_len=XMP_LEN)

_PROFILE_TIMINGS = OrderedDict((
    (Timing.CL, codec.SplitField('tAAmin')),
    (Timing.RCD, codec.SplitField('tRCDmin')),
    (Timing.RP, codec.SplitField('tRPmin')),
    (Timing.RAS, codec.SplitField('tRASmin_lsb', 12, 'upper_nibbles_tRAS_tRC', 0)),
    (Timing.RC, codec.SplitField('tRCmin_lsb', 12, 'upper_nibbles_tRAS_tRC', 4)),
    (Timing.RFC, codec.SplitField('tRFCmin', 16)),
    (Timing.RRD, codec.SplitField('tRRDmin')),
    (Timing.FAW, codec.SplitField('tFAWmin_lsb', 12, 'upper_nibble_tFAW', 0)),
    (Timing.WR, codec.SplitField('tWRmin')),
    (Timing.WTR, codec.SplitField('tWTRmin')),
    (Timing.RTP, codec.SplitField('tRTPmin')),
    (Timing.CWL, codec.SplitField('tCWLmin')),
    (Timing.REFI, codec.SplitField('tREFImax', 16)),
))
_PROFILE_CLS = codec.ClBitmap('cas_latencies_supported_lsb', 'cas_latencies_supported_msb')


class MTB(NamedTuple):
    """
    Profile medium timebase: one raw tick lasts dividend / divisor ns.
    """

    dividend: int
    divisor: int

    @property
    def ns(self) -> float:
        """
        Duration of one tick, zero when divisor is zero.

        :return: Time in ns.
        """

        if self.divisor == 0:
            return 0.0
        return self.dividend / self.divisor


class XmpProfile:
    """
    Single XMP profile.

    Timings are converted in raw tick space: tick count = raw / tCKmin, raw = tick count * tCKmin. The profile
    MTB cancels out, so it is only needed for frequency and ns values.
    """

    def __init__(self, data: bytes, mtb: MTB) -> None:
        if len(data) != XMP_PROFILE_LEN:
            raise SizeError(f'XMP profile must be {XMP_PROFILE_LEN} bytes, got {len(data)} bytes')

        self._fields = XMP_PROFILE.unpack(bytes(data))
        self._mtb = MTB(0, 0)
        self.mtb = mtb

    @property
    def fields(self) -> OrderedDict[str, Any]:
        """
        Copy of raw profile fields.

        :return: Ordered dict of fields.
        """

        return OrderedDict(self._fields)

    @property
    def mtb(self) -> MTB:
        """
        Profile medium timebase.

        :return: MTB.
        """

        return self._mtb

    @mtb.setter
    def mtb(self, mtb: tuple[int, int]) -> None:
        dividend, divisor = mtb
        for value in (dividend, divisor):
            if not 0 <= value <= 0xff:
                raise RangeError(f'MTB dividend and divisor must fit into a byte: {dividend}/{divisor}')
        self._mtb = MTB(dividend, divisor)

    @property
    def voltage(self) -> int:
        """
        Module VDD voltage.

        :return: Voltage in centivolts.
        """

        return codec.decode_decimal_voltage(self._fields['module_vdd_voltage_level'])

    @voltage.setter
    def voltage(self, centivolts: int) -> None:
        self._fields['module_vdd_voltage_level'] = \
            codec.encode_decimal_voltage(centivolts, self._fields['module_vdd_voltage_level'])

    @property
    def clock_ticks(self) -> int:
        """
        Minimum clock cycle time, tCKmin, in MTB ticks.

        :return: Raw tCKmin.
        """

        return self._fields['tCKmin']

    @clock_ticks.setter
    def clock_ticks(self, ticks: int) -> None:
        if not 1 <= ticks <= 0xff:
            raise RangeError(f'tCKmin must be 1..255 MTB ticks: {ticks}')
        self._fields['tCKmin'] = ticks

    @property
    def tck_ns(self) -> float:
        """
        Clock period.

        :return: Time in ns.
        """

        return self.clock_ticks * self._mtb.ns

    @property
    def frequency(self) -> float:
        """
        Clock frequency, zero when the MTB is zero.

        :return: Frequency in MHz.
        """

        tck_ns = self.tck_ns
        if tck_ns == 0:
            return 0.0
        return 1000 / tck_ns

    @frequency.setter
    def frequency(self, frequency: float) -> None:
        if frequency <= 0 or self._mtb.ns == 0:
            raise RangeError(f'Can not set frequency {frequency} MHz with MTB {self._mtb.dividend}/{self._mtb.divisor}')
        self.clock_ticks = codec.round_half_up(1000 / (frequency * self._mtb.ns))

    @property
    def supported_cls(self) -> OrderedDict[int, bool]:
        """
        CAS latencies supported.

        :return: Ordered dict from CL (4..18) to support flag.
        """

        return _PROFILE_CLS.decode(self._fields)

    def is_cl_supported(self, cl: int) -> bool:
        """
        Check CL support bit.

        :param cl: CAS latency, 4..18.
        :return: Whether supported.
        """

        return _PROFILE_CLS.get(self._fields, cl)

    def set_cl_supported(self, cl: int, supported: bool) -> None:
        """
        Set CL support bit.

        :param cl: CAS latency, 4..18.
        :param supported: Whether supported.
        :return: None.
        """

        _PROFILE_CLS.set(self._fields, cl, supported)

    def get_timing(self, timing: Union[Timing, str]) -> int:
        """
        Get timing in clock ticks.

        :param timing: Timing or its name.
        :return: Tick count, rounded to nearest.
        """

        raw = _PROFILE_TIMINGS[Timing.parse(timing)].get(self._fields)
        if self.clock_ticks == 0:
            return 0
        return codec.round_half_up(raw / self.clock_ticks)

    def get_timing_ns(self, timing: Union[Timing, str]) -> float:
        """
        Get timing as stored, in ns.

        :param timing: Timing or its name.
        :return: Time in ns.
        """

        return _PROFILE_TIMINGS[Timing.parse(timing)].get(self._fields) * self._mtb.ns

    @property
    def timings(self) -> OrderedDict[Timing, int]:
        """
        All timings in clock ticks.

        :return: Ordered dict from timing to tick count.
        """

        return OrderedDict((timing, self.get_timing(timing)) for timing in _PROFILE_TIMINGS)

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

        fields = OrderedDict(self._fields)
        if timings and fields['tCKmin'] == 0:
            raise RangeError('Can not set timings with tCKmin of 0 MTB ticks, set clock first')
        for timing, ticks in timings.items():
            timing = Timing.parse(timing)
            codec.check_ticks(ticks)
            if timing is Timing.CL:
                codec.check_cl(ticks)
            _PROFILE_TIMINGS[timing].set(fields, ticks * fields['tCKmin'])
            if timing is Timing.CL:
                _PROFILE_CLS.set(fields, ticks, True)
        self._fields = fields

    def to_bytes(self) -> bytes:
        """
        Serialize profile.

        :return: Binary profile.
        """

        return XMP_PROFILE.pack(self._fields)


class XmpBlock:
    """
    XMP block: header with enable bits and MTBs, followed by two profiles.
    """

    def __init__(self, data: bytes) -> None:
        if len(data) < XMP_LEN:
            raise SizeError(f'Expected {XMP_LEN} bytes of XMP, got {len(data)} bytes')
        if bytes(data[:len(XMP_MAGIC)]) != XMP_MAGIC:
            raise FormatError(f'Invalid XMP header: {bytes(data[:len(XMP_MAGIC)]).hex()} != {XMP_MAGIC.hex()}')

        self._fields = XMP.unpack(bytes(data[:XMP_LEN]))

        config = self._fields['xmp_org_and_config']
        self._enabled = [codec.get_flag(config, number - 1) for number in XMP_PROFILES]
        self._dimms = [codec.get_bits(config, 2 * number + 1, 2 * number) for number in XMP_PROFILES]

        self._profiles: list[Optional[XmpProfile]] = []
        for number, enabled in zip(XMP_PROFILES, self._enabled):
            profile = None
            if enabled:
                mtb = MTB(self._fields[f'profile_{number}_mtb_dividend'],
                          self._fields[f'profile_{number}_mtb_divisor'])
                profile = XmpProfile(self._fields[f'profile_{number}'], mtb)
            self._profiles.append(profile)

    @property
    def fields(self) -> OrderedDict[str, Any]:
        """
        Copy of raw header fields, as read.

        :return: Ordered dict of fields.
        """

        return OrderedDict(self._fields)

    @property
    def version(self) -> tuple[int, int]:
        """
        XMP revision, kept verbatim.

        :return: Major and minor version.
        """

        revision = self._fields['xmp_revision']
        return codec.get_bits(revision, 7, 4), codec.get_bits(revision, 3, 0)

    @property
    def profiles(self) -> tuple[Optional[XmpProfile], ...]:
        """
        Profile slots, None for disabled profiles.

        :return: Profile 1 and profile 2.
        """

        return tuple(self._profiles)

    @staticmethod
    def _index(number: int) -> int:
        if number not in XMP_PROFILES:
            raise RangeError(f'XMP profile number must be 1 or 2: {number!r}')
        return number - 1

    def profile(self, number: int) -> Optional[XmpProfile]:
        """
        Get profile by number.

        :param number: 1 or 2.
        :return: Profile, None if disabled.
        """

        return self._profiles[self._index(number)]

    def is_profile_enabled(self, number: int) -> bool:
        """
        Check profile enable bit.

        :param number: 1 or 2.
        :return: Whether enabled.
        """

        return self._enabled[self._index(number)]

    def get_dimms_per_channel(self, number: int) -> int:
        """
        Get number of DIMMs per channel the profile is meant for.

        :param number: 1 or 2.
        :return: 1..4.
        """

        return self._dimms[self._index(number)] + 1

    def set_dimms_per_channel(self, number: int, dimms: int) -> None:
        """
        Set number of DIMMs per channel the profile is meant for.

        :param number: 1 or 2.
        :param dimms: 1..4.
        :return: None.
        """

        index = self._index(number)
        if dimms not in (1, 2, 3, 4):
            raise RangeError(f'DIMMs per channel must be 1..4: {dimms!r}')
        self._dimms[index] = dimms - 1

    def to_bytes(self) -> bytes:
        """
        Serialize XMP block. Disabled profiles are written back as read.

        :return: Binary XMP block.
        """

        fields = OrderedDict(self._fields)

        config = codec.set_bits(fields['xmp_org_and_config'], 5, 0, 0)
        for number, enabled, dimms in zip(XMP_PROFILES, self._enabled, self._dimms):
            config = codec.set_flag(config, number - 1, enabled)
            config = codec.set_bits(config, 2 * number + 1, 2 * number, dimms)
        fields['xmp_org_and_config'] = config

        for number, profile in zip(XMP_PROFILES, self._profiles):
            if profile is None:
                continue
            fields[f'profile_{number}'] = profile.to_bytes()
            fields[f'profile_{number}_mtb_dividend'], fields[f'profile_{number}_mtb_divisor'] = profile.mtb

        return XMP.pack(fields)


def make_test_profile(**fields: Any) -> bytes:
    """
    Build profile from zeroed fields, for tests.

    :param fields: Field values to set.
    :return: Binary profile.
    """

    struct_dict = XMP_PROFILE.unpack(bytes(XMP_PROFILE_LEN))
    struct_dict.update(fields)
    return XMP_PROFILE.pack(struct_dict)


def make_test_xmp(config: int = 0b00_00_01_11) -> bytes:
    """
    Build XMP block with DDR3-1600 9-9-9-24 1.65 V and DDR3-1333 9-9-9-24 1.50 V profiles, for tests.

    :param config: Enable and DIMMs per channel byte.
    :return: Binary XMP block.
    """

    profile_1 = make_test_profile(
        module_vdd_voltage_level=0b0_01_0110_1,
        tCKmin=10,
        tAAmin=90,
        cas_latencies_supported_lsb=0b1111_1100,
        tCWLmin=80,
        tRPmin=90,
        tRCDmin=90,
        tWRmin=120,
        upper_nibbles_tRAS_tRC=0x10,
        tRASmin_lsb=0xf0,
        tRCmin_lsb=0x4a,
        tREFImax=62400,
        tRFCmin=1280,
        tRTPmin=60,
        tRRDmin=48,
        tFAWmin_lsb=240,
        tWTRmin=60,
        vendor_personality_code=0x5a,
    )
    profile_2 = make_test_profile(
        module_vdd_voltage_level=0b0_01_0101_0,
        tCKmin=12,
        tAAmin=108,
        cas_latencies_supported_lsb=0b0011_1100,
        tCWLmin=84,
        tRPmin=108,
        tRCDmin=108,
        tWRmin=120,
        upper_nibbles_tRAS_tRC=0x11,
        tRASmin_lsb=0x20,
        tRCmin_lsb=0x8c,
        tREFImax=62400,
        tRFCmin=1296,
        tRTPmin=72,
        tRRDmin=48,
        upper_nibble_tFAW=0xa1,
        tFAWmin_lsb=0x20,
        tWTRmin=72,
    )
    header = XMP_MAGIC + bytes((config, 0x12, 1, 8, 1, 8, 0))
    return header + profile_1 + profile_2


def test_mtb() -> None:
    """
    Test MTB.

    :return: None.
    """

    assert MTB(1, 8).ns == 0.125
    assert MTB(1, 0).ns == 0.0


def test_profile_decode() -> None:
    """
    Decode known profile.

    :return: None.
    """

    profile = XmpProfile(make_test_xmp()[9:44], MTB(1, 8))
    assert profile.voltage == 165
    assert profile.clock_ticks == 10
    assert profile.tck_ns == 1.25
    assert profile.frequency == 800.0
    assert [cl for cl, supported in profile.supported_cls.items() if supported] == [6, 7, 8, 9, 10, 11]
    assert dict(profile.timings) == {
        'tCL': 9, 'tRCD': 9, 'tRP': 9, 'tRAS': 24, 'tRC': 33, 'tRFC': 128, 'tRRD': 5, 'tFAW': 24,
        'tWR': 12, 'tWTR': 6, 'tRTP': 6, 'tCWL': 8, 'tREFI': 6240,
    }
    assert profile.get_timing_ns('tCL') == 11.25
    assert profile.get_timing_ns(Timing.REFI) == 7800.0


def test_profile_wrong_size() -> None:
    """
    Profile must be exactly 35 bytes.

    :return: None.
    """

    for size in (34, 36):
        try:
            XmpProfile(bytes(size), MTB(1, 8))
        except SizeError:
            # As expected, wrong size.
            pass
        else:
            assert False, 'No error!'


def test_profile_unmodified_bytes() -> None:
    """
    Unmodified profile serializes to the same bytes.

    :return: None.
    """

    data = make_test_xmp()[44:79]
    assert XmpProfile(data, MTB(1, 8)).to_bytes() == data


def test_profile_set_timing() -> None:
    """
    Test setting timings and CL side effect.

    :return: None.
    """

    profile = XmpProfile(make_test_xmp()[9:44], MTB(1, 8))
    profile.set_cl_supported(10, False)
    profile.set_timing('tCL', 10)
    assert profile.get_timing(Timing.CL) == 10
    assert profile.fields['tAAmin'] == 100
    assert profile.is_cl_supported(10)

    profile.set_timing(Timing.RC, 40)
    assert profile.get_timing('tRC') == 40
    assert profile.get_timing('tRAS') == 24
    assert profile.fields['upper_nibbles_tRAS_tRC'] == 0x10

    profile.set_timing(Timing.FAW, 30)
    assert profile.get_timing(Timing.FAW) == 30
    profile.set_timing(Timing.REFI, 6000)
    assert profile.get_timing(Timing.REFI) == 6000


def test_profile_set_timing_errors() -> None:
    """
    Failed timing updates leave profile untouched.

    :return: None.
    """

    data = make_test_xmp()[9:44]
    profile = XmpProfile(data, MTB(1, 8))
    bad_updates = (
        {'tCL': 0},
        {'tRCD': 0},
        {'tCL': 19},
        {'tCL': 3},
        {'tRAS': 410},
        {'tREFI': 7000},
        {'tXYZ': 5},
        {'tRCD': 10, 'tRP': -1},
    )
    for timings in bad_updates:
        try:
            profile.set_timings(timings)
        except RangeError:
            # As expected, not encodable.
            pass
        else:
            assert False, f'No error for {timings}!'
    assert profile.to_bytes() == data


def test_profile_zero_clock() -> None:
    """
    Profile with tCKmin of 0 reads zero ticks and rejects timing edits.

    :return: None.
    """

    data = make_test_profile(tCKmin=0, tRCDmin=90)
    profile = XmpProfile(data, MTB(1, 8))
    assert profile.frequency == 0.0
    assert profile.get_timing(Timing.RCD) == 0

    try:
        profile.set_timing('tRCD', 5)
    except RangeError:
        # As expected, no clock to count ticks of.
        pass
    else:
        assert False, 'No error!'
    assert profile.to_bytes() == data

    profile.clock_ticks = 10
    profile.set_timing('tRCD', 5)
    assert profile.get_timing('tRCD') == 5
    assert profile.fields['tRCDmin'] == 50


def test_profile_voltage_and_frequency() -> None:
    """
    Test voltage and frequency setters.

    :return: None.
    """

    profile = XmpProfile(make_test_xmp()[9:44], MTB(1, 8))
    profile.voltage = 150
    assert profile.voltage == 150
    assert profile.fields['module_vdd_voltage_level'] == 0b0_01_0101_0

    profile.frequency = 1000 * 2 / 3
    assert profile.clock_ticks == 12
    profile.clock_ticks = 9
    assert round(profile.frequency, 2) == 888.89

    profile.mtb = MTB(1, 0)
    assert profile.frequency == 0.0
    assert profile.get_timing(Timing.CL) == 10
    try:
        profile.frequency = 800.0
    except RangeError:
        # As expected, zero MTB.
        pass
    else:
        assert False, 'No error!'

    try:
        profile.mtb = MTB(256, 8)
    except RangeError:
        # As expected, too wide.
        pass
    else:
        assert False, 'No error!'
    assert profile.mtb == MTB(1, 0)


def test_xmp_decode() -> None:
    """
    Both profiles are decoded into their own slots.

    :return: None.
    """

    xmp = XmpBlock(make_test_xmp())
    assert xmp.version == (1, 2)
    assert xmp.is_profile_enabled(1)
    assert xmp.is_profile_enabled(2)
    assert xmp.get_dimms_per_channel(1) == 2
    assert xmp.get_dimms_per_channel(2) == 1

    profile_1, profile_2 = xmp.profiles
    assert profile_1 is xmp.profile(1)
    assert profile_2 is xmp.profile(2)
    assert profile_1.frequency == 800.0
    assert round(profile_2.frequency, 2) == 666.67
    assert profile_2.voltage == 150
    assert profile_2.get_timing(Timing.CL) == 9
    assert profile_2.get_timing(Timing.RAS) == 24
    assert profile_2.get_timing(Timing.FAW) == 24
    assert profile_2.fields['upper_nibble_tFAW'] == 0xa1

    try:
        xmp.profile(3)
    except RangeError:
        # As expected, no such profile.
        pass
    else:
        assert False, 'No error!'


def test_xmp_to_bytes_unmodified() -> None:
    """
    Unmodified block serializes to the same bytes, repeatedly.

    :return: None.
    """

    data = make_test_xmp()
    xmp = XmpBlock(data)
    assert xmp.to_bytes() == data
    assert xmp.to_bytes() == data


def test_xmp_to_bytes_modified() -> None:
    """
    Modified profiles and DIMM counts end up in the right places.

    :return: None.
    """

    data = make_test_xmp()
    xmp = XmpBlock(data)
    xmp.profile(2).set_timing(Timing.CL, 10)
    xmp.profile(2).mtb = MTB(1, 12)
    xmp.set_dimms_per_channel(2, 4)
    xmp.set_dimms_per_channel(1, 1)

    new_data = xmp.to_bytes()
    assert new_data[:2] == XMP_MAGIC
    assert new_data[2] == 0b00_11_00_11
    assert new_data[3] == 0x12
    assert new_data[4:8] == bytes((1, 8, 1, 12))
    assert new_data[9:44] == data[9:44]
    assert new_data[44 + 2] == 120
    assert xmp.to_bytes() == new_data

    new_xmp = XmpBlock(new_data)
    assert new_xmp.profile(2).get_timing('tCL') == 10
    assert new_xmp.profile(2).mtb == MTB(1, 12)
    assert new_xmp.profile(1).get_timing('tCL') == 9


def test_xmp_disabled_profile() -> None:
    """
    Disabled profile has no slot, its bytes are kept.

    :return: None.
    """

    data = make_test_xmp(config=0b11_00_00_01)
    xmp = XmpBlock(data)
    assert xmp.profile(1) is not None
    assert xmp.profile(2) is None
    assert not xmp.is_profile_enabled(2)
    assert xmp.to_bytes() == data


def test_xmp_errors() -> None:
    """
    Short data and bad magic are rejected.

    :return: None.
    """

    data = make_test_xmp()
    for bad_data, error in ((data[:78], SizeError), (b'\x0c\x4b' + data[2:], FormatError)):
        try:
            XmpBlock(bad_data)
        except error:
            # As expected.
            pass
        else:
            assert False, 'No error!'
