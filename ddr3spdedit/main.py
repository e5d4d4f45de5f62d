# SPDX-License-Identifier: AGPL-3.0-or-later
"""
CLI tool for viewing and editing DDR3 SPD images with XMP profiles.
"""

import functools
import json
import os
import struct
from typing import Any, Callable, Iterable, Optional

import click

from ddr3spdedit import spd as pspd
from ddr3spdedit import strct
from ddr3spdedit import xmp as pxmp
from ddr3spdedit.codec import Timing, Voltage
from ddr3spdedit.errors import FormatError, RangeError, SizeError, SpdError


_ON_OFF = {'on': True, 'off': False, 'yes': True, 'no': False, '1': True, '0': False}


def _reports_spd_errors(func: Callable[..., None]) -> Callable[..., None]:
    @functools.wraps(func)
    def _wrapper(*args: Any, **kwargs: Any) -> None:
        try:
            func(*args, **kwargs)
        except SpdError as err:
            raise click.ClickException(str(err)) from err

    return _wrapper


def _split_assignments(values: Iterable[str]) -> list[tuple[str, str]]:
    pairs = []
    for value in values:
        if '=' not in value:
            raise RangeError(f'Expected NAME=VALUE, got {value!r}')
        name, str_value = value.split('=', 1)
        pairs.append((name.strip(), str_value.strip()))
    return pairs


def _parse_on_off(str_value: str) -> bool:
    try:
        return _ON_OFF[str_value.lower()]
    except KeyError:
        raise RangeError(f'Expected on or off, got {str_value!r}') from None


def _parse_int(str_value: str) -> int:
    try:
        return int(str_value, 0)
    except ValueError:
        raise RangeError(f'Expected integer, got {str_value!r}') from None


def _parse_cls(values: Iterable[str]) -> list[tuple[int, bool]]:
    return [(_parse_int(cl), _parse_on_off(flag)) for cl, flag in _split_assignments(values)]


def _parse_timings(values: Iterable[str]) -> dict[Timing, int]:
    return {Timing.parse(name): _parse_int(ticks) for name, ticks in _split_assignments(values)}


def _set_timings_only(timings: dict[Timing, int]) -> dict[Timing, int]:
    # Blank tCKmin reads all timings as 0 ticks.
    return {timing: ticks for timing, ticks in timings.items() if ticks > 0}


def _confirm_overwrite(path: str, yes: bool) -> None:
    if os.path.exists(path) and not yes:
        click.confirm(f'Are you sure you want to overwrite "{path}"?', abort=True)


def _format_cls(cls: dict[int, bool]) -> str:
    return ' '.join(str(cl) for cl, supported in cls.items() if supported) or '-'


def _print_timings(timings: dict[Timing, int], get_timing_ns: Callable[[Timing], float]) -> None:
    name_len = max(len(timing.value) for timing in timings)
    for timing, ticks in timings.items():
        print(f'        {timing.value:>{name_len}}: {ticks} ({get_timing_ns(timing):.3f} ns)')


def _print_profile(xmp: pxmp.XmpBlock, number: int, raw: bool) -> None:
    profile = xmp.profile(number)
    if profile is None:
        print(f'[ ] XMP profile {number} is disabled')
        return

    print(f'[*] XMP profile {number} ({xmp.get_dimms_per_channel(number)} DIMMs per channel):')
    print(f'        MTB: {profile.mtb.dividend}/{profile.mtb.divisor} ({profile.mtb.ns:.3f} ns)')
    print(f'        Frequency: {profile.frequency:.2f} MHz '
          f'(tCKmin {profile.clock_ticks}, {profile.tck_ns:.3f} ns)')
    print(f'        Voltage: {profile.voltage / 100:.2f} V')
    print(f'        Supported CLs: {_format_cls(profile.supported_cls)}')
    _print_timings(profile.timings, profile.get_timing_ns)
    if raw:
        pxmp.XMP_PROFILE.print(profile.fields, indent=12)


def _print_spd(spd: pspd.SpdImage, raw: bool) -> None:
    print(f'[*] Got {pspd.DDR3_SPD.get_name()}:')
    print(f'        Frequency: {spd.frequency:.2f} MHz ({spd.tck_ns:.3f} ns)')
    print('        Voltages: ' + ' '.join(
        f'{voltage.value}={"yes" if operable else "no"}' for voltage, operable in spd.voltages.items()))
    print(f'        Supported CLs: {_format_cls(spd.supported_cls)}')
    _print_timings(spd.timings, spd.get_timing_ns)
    if raw:
        pspd.DDR3_SPD.print(spd.fields, indent=12)

    if not spd.crc_valid:
        print(f'[!] Invalid CRC: 0x{spd.crc:04x}, save to recalculate')

    if spd.xmp is None:
        return
    major, minor = spd.xmp.version
    print(f'[*] Got XMP {major}.{minor}')
    for number in pxmp.XMP_PROFILES:
        _print_profile(spd.xmp, number, raw)


def _save(spd: pspd.SpdImage, new_spd: str) -> None:
    print(f'[ ] Writing "{new_spd}"...')
    data = spd.save(new_spd)
    print(f'[*] Done, CRC 0x{int.from_bytes(data[0x7e:0x80], "little"):04x}')


@click.command(
    name='parse-spd',
    help='Parse binary DDR3 SPD image and show timings.\n'
         '\n'
         'SPD - path to SPD dump.\n',
)
@click.option(
    '--raw',
    '-r',
    is_flag=True,
    help='Also show raw field values.',
)
@click.argument(
    'spd_path',
    metavar='SPD',
    type=click.Path(exists=True, file_okay=True, dir_okay=False, writable=False, readable=True),
    required=True,
)
@_reports_spd_errors
def _parse_spd(raw: bool, spd_path: str) -> None:
    _print_spd(pspd.SpdImage.load(spd_path), raw)


@click.command(
    name='edit-spd',
    help='Change frequency, voltages, CAS latencies or timings of SPD.\n'
         '\n'
         'SPD - path to source SPD dump.\n'
         'NEW_SPD - where to write modified SPD.\n',
)
@click.option(
    '--frequency',
    '-f',
    type=float,
    help='Clock frequency in MHz (half the data rate).',
)
@click.option(
    '--keep-time',
    is_flag=True,
    help='Keep timings in ns when changing frequency, by default tick counts are kept.',
)
@click.option(
    '--voltage',
    '-v',
    multiple=True,
    help=f'VOLTAGE=on|off, VOLTAGE is one of {", ".join(voltage.value for voltage in Voltage)}.',
)
@click.option(
    '--cl',
    '-c',
    multiple=True,
    help='CL=on|off, mark CAS latency 4..18 as supported or not.',
)
@click.option(
    '--timing',
    '-t',
    multiple=True,
    help=f'TIMING=TICKS, TIMING is one of {", ".join(timing.value for timing in list(Timing)[:11])}.',
)
@click.option(
    '--yes',
    '-y',
    is_flag=True,
    help='Overwrite NEW_SPD without asking.',
)
@click.argument(
    'spd_path',
    metavar='SPD',
    type=click.Path(exists=True, file_okay=True, dir_okay=False, writable=False, readable=True),
    required=True,
)
@click.argument(
    'new_spd',
    type=click.Path(file_okay=True, dir_okay=False, writable=True, readable=False),
    required=True,
)
@_reports_spd_errors
def _edit_spd(  # pylint: disable=too-many-arguments
        frequency: Optional[float],
        keep_time: bool,
        voltage: tuple[str, ...],
        cl: tuple[str, ...],
        timing: tuple[str, ...],
        yes: bool,
        spd_path: str,
        new_spd: str) -> None:
    spd = pspd.SpdImage.load(spd_path)

    if frequency is not None:
        timings = _set_timings_only(spd.timings)
        spd.frequency = frequency
        if not keep_time:
            spd.set_timings(timings)
        print(f'[ ] Frequency set to {spd.frequency:.2f} MHz')

    for name, flag in _split_assignments(voltage):
        spd.set_voltage(name, _parse_on_off(flag))
    for cl_value, supported in _parse_cls(cl):
        spd.set_cl_supported(cl_value, supported)
    spd.set_timings(_parse_timings(timing))

    _print_spd(spd, False)
    _confirm_overwrite(new_spd, yes)
    _save(spd, new_spd)


@click.command(
    name='edit-xmp',
    help='Change XMP profile of SPD.\n'
         '\n'
         'SPD - path to source SPD dump.\n'
         'NEW_SPD - where to write modified SPD.\n',
)
@click.option(
    '--profile',
    '-p',
    type=click.IntRange(1, 2),
    default=1,
    show_default=True,
    help='XMP profile number.',
)
@click.option(
    '--mtb',
    help='Medium timebase as DIVIDEND/DIVISOR, e.g. 1/8.',
)
@click.option(
    '--clock-ticks',
    type=int,
    help='tCKmin in MTB ticks.',
)
@click.option(
    '--frequency',
    '-f',
    type=float,
    help='Clock frequency in MHz, rounded to whole MTB ticks.',
)
@click.option(
    '--keep-time',
    is_flag=True,
    help='Keep timings in MTB ticks when changing clock, by default clock tick counts are kept.',
)
@click.option(
    '--voltage',
    '-v',
    type=float,
    help='Module voltage in V, multiple of 0.05.',
)
@click.option(
    '--dimms',
    type=click.IntRange(1, 4),
    help='DIMMs per channel.',
)
@click.option(
    '--cl',
    '-c',
    multiple=True,
    help='CL=on|off, mark CAS latency 4..18 as supported or not.',
)
@click.option(
    '--timing',
    '-t',
    multiple=True,
    help=f'TIMING=TICKS, TIMING is one of {", ".join(timing.value for timing in Timing)}.',
)
@click.option(
    '--yes',
    '-y',
    is_flag=True,
    help='Overwrite NEW_SPD without asking.',
)
@click.argument(
    'spd_path',
    metavar='SPD',
    type=click.Path(exists=True, file_okay=True, dir_okay=False, writable=False, readable=True),
    required=True,
)
@click.argument(
    'new_spd',
    type=click.Path(file_okay=True, dir_okay=False, writable=True, readable=False),
    required=True,
)
@_reports_spd_errors
def _edit_xmp(  # pylint: disable=too-many-arguments,too-many-locals
        profile: int,
        mtb: Optional[str],
        clock_ticks: Optional[int],
        frequency: Optional[float],
        keep_time: bool,
        voltage: Optional[float],
        dimms: Optional[int],
        cl: tuple[str, ...],
        timing: tuple[str, ...],
        yes: bool,
        spd_path: str,
        new_spd: str) -> None:
    spd = pspd.SpdImage.load(spd_path)
    if spd.xmp is None:
        raise click.ClickException(f'No XMP in "{spd_path}"')
    selected = spd.xmp.profile(profile)
    if selected is None:
        raise click.ClickException(f'There is no XMP profile #{profile} in "{spd_path}"')

    timings = _set_timings_only(selected.timings)
    if mtb is not None:
        dividend, _, divisor = mtb.partition('/')
        selected.mtb = pxmp.MTB(_parse_int(dividend), _parse_int(divisor or '1'))
    if clock_ticks is not None:
        selected.clock_ticks = clock_ticks
    if frequency is not None:
        selected.frequency = frequency
    if not keep_time and (clock_ticks is not None or frequency is not None):
        selected.set_timings(timings)

    if voltage is not None:
        selected.voltage = round(voltage * 100)
    if dimms is not None:
        spd.xmp.set_dimms_per_channel(profile, dimms)
    for cl_value, supported in _parse_cls(cl):
        selected.set_cl_supported(cl_value, supported)
    selected.set_timings(_parse_timings(timing))

    _print_profile(spd.xmp, profile, False)
    _confirm_overwrite(new_spd, yes)
    _save(spd, new_spd)


@click.command(
    name='fix-spd-checksum',
    help='Recalculate checksum of SPD.\n'
         '\n'
         'SPD - path to source SPD dump.\n'
         'NEW_SPD - where to write fixed SPD.\n',
)
@click.option(
    '--yes',
    '-y',
    is_flag=True,
    help='Overwrite NEW_SPD without asking.',
)
@click.argument(
    'spd_path',
    metavar='SPD',
    type=click.Path(exists=True, file_okay=True, dir_okay=False, writable=False, readable=True),
    required=True,
)
@click.argument(
    'new_spd',
    type=click.Path(file_okay=True, dir_okay=False, writable=True, readable=False),
    required=True,
)
@_reports_spd_errors
def _fix_spd_checksum(yes: bool, spd_path: str, new_spd: str) -> None:
    spd = pspd.SpdImage.load(spd_path)
    if spd.crc_valid:
        print('[*] Checksum already valid, no changes')
    else:
        print(f'[ ] Invalid checksum 0x{spd.crc:04x}')
    _confirm_overwrite(new_spd, yes)
    _save(spd, new_spd)


def _struct_for_len(spd_len: int) -> strct.Struct:
    if spd_len >= pspd.DDR3_SPD_FULL_LEN:
        return pspd.DDR3_SPD_FULL
    return pspd.DDR3_SPD


@click.command(
    name='spd2json',
    help='Convert binary SPD into JSON with raw fields.\n'
         '\n'
         'SPD_PATH - path to source binary SPD.\n'
         'JSON_PATH - where to write JSON.\n',
)
@click.argument(
    'spd_path',
    type=click.Path(exists=True, file_okay=True, dir_okay=False, writable=False, readable=True),
    required=True,
)
@click.argument(
    'json_path',
    type=click.Path(file_okay=True, dir_okay=False, writable=True, readable=False),
    required=True,
)
@_reports_spd_errors
def _spd_to_json(spd_path: str, json_path: str) -> None:
    with open(spd_path, 'rb') as spd_f:
        spd_bin = spd_f.read()

    if len(spd_bin) < pspd.DDR3_SPD_LEN:
        raise SizeError(f'SPD must be at least {pspd.DDR3_SPD_LEN} bytes, got {len(spd_bin)} bytes')

    spd_struct = _struct_for_len(len(spd_bin))
    if len(spd_bin) > spd_struct.get_len():
        print(f'[!] Ignoring {len(spd_bin) - spd_struct.get_len()} bytes after SPD')
    spd = spd_struct.unpack(spd_bin[:spd_struct.get_len()])
    with open(json_path, 'w') as json_f:
        spd_struct.json_dump(spd, json_f)


@click.command(
    name='json2spd',
    help='Convert JSON with raw fields into binary SPD.\n'
         '\n'
         'JSON_PATH - path to SPD in JSON format.\n'
         'SPD_PATH - where to write binary SPD.\n',
)
@click.argument(
    'json_path',
    type=click.Path(exists=True, file_okay=True, dir_okay=False, writable=False, readable=True),
    required=True,
)
@click.argument(
    'spd_path',
    type=click.Path(file_okay=True, dir_okay=False, writable=True, readable=False),
    required=True,
)
@_reports_spd_errors
def _json_to_spd(json_path: str, spd_path: str) -> None:
    with open(json_path, 'r') as json_f:
        try:
            raw_spd = json.load(json_f)
        except ValueError as err:
            raise FormatError(f'Invalid JSON in "{json_path}": {err}') from err
    if not isinstance(raw_spd, dict):
        raise FormatError(f'Expected JSON object with SPD fields in "{json_path}"')

    spd_struct = pspd.DDR3_SPD_FULL if 'customer_use' in raw_spd else pspd.DDR3_SPD
    missing = [field_name for field_name in spd_struct.field_names() if field_name not in raw_spd]
    if missing:
        raise FormatError(f'Missing fields for "{spd_struct.get_name()}": {", ".join(missing)}')

    try:
        spd_bin = spd_struct.pack(spd_struct.from_json_dict(raw_spd))
    except (AssertionError, ValueError, TypeError, struct.error) as err:
        raise FormatError(f'Invalid field value in "{json_path}": {err}') from err
    with open(spd_path, 'wb') as spd_f:
        spd_f.write(spd_bin)


@click.group(
    context_settings={
        'help_option_names': ['-h', '--help'],
    },
)
def _main():
    pass


def cli_main() -> None:
    """
    CLI entry point.

    :return: None.
    """

    _main.add_command(_parse_spd)
    _main.add_command(_edit_spd)
    _main.add_command(_edit_xmp)
    _main.add_command(_fix_spd_checksum)
    _main.add_command(_spd_to_json)
    _main.add_command(_json_to_spd)

    _main()


def _write_test_spd(path: str, data: bytes) -> None:
    with open(path, 'wb') as spd_f:
        spd_f.write(data)


def _read_test_spd(path: str) -> bytes:
    with open(path, 'rb') as spd_f:
        return spd_f.read()


def test_parse_spd(tmp_path: Any) -> None:
    """
    Test parse-spd output.

    :param tmp_path: Temporary directory.
    :return: None.
    """

    from click.testing import CliRunner  # pylint: disable=import-outside-toplevel

    path = str(tmp_path / 'spd.bin')
    _write_test_spd(path, pspd.make_test_spd(pxmp.make_test_xmp()))

    result = CliRunner().invoke(_parse_spd, ['--raw', path])
    assert result.exit_code == 0, result.output
    assert 'Frequency: 666.67 MHz (1.500 ns)' in result.output
    assert 'Voltages: 1.25v=no 1.35v=yes 1.50v=yes' in result.output
    assert 'tCL: 9 (13.500 ns)' in result.output
    assert 'Got XMP 1.2' in result.output
    assert 'XMP profile 1 (2 DIMMs per channel)' in result.output
    assert 'Voltage: 1.65 V' in result.output
    assert 'tREFI: 6240' in result.output
    assert 'Invalid CRC' not in result.output


def test_edit_spd(tmp_path: Any) -> None:
    """
    Test edit-spd keeps tick counts across frequency change.

    :param tmp_path: Temporary directory.
    :return: None.
    """

    from click.testing import CliRunner  # pylint: disable=import-outside-toplevel

    path = str(tmp_path / 'spd.bin')
    new_path = str(tmp_path / 'new.bin')
    _write_test_spd(path, pspd.make_test_spd())

    result = CliRunner().invoke(_edit_spd, [
        '--frequency', '800',
        '--voltage', '1.50v=off',
        '--cl', '11=on',
        '--timing', 'tCL=10',
        path,
        new_path,
    ])
    assert result.exit_code == 0, result.output

    spd = pspd.SpdImage(_read_test_spd(new_path))
    assert spd.crc_valid
    assert spd.frequency == 800.0
    assert spd.get_timing(Timing.CL) == 10
    assert spd.get_timing(Timing.RCD) == 9
    assert spd.get_timing(Timing.RAS) == 24
    assert not spd.get_voltage(Voltage.V1_50)
    assert spd.is_cl_supported(11)


def test_edit_spd_bad_timing(tmp_path: Any) -> None:
    """
    Test edit-spd rejects unencodable values and writes nothing.

    :param tmp_path: Temporary directory.
    :return: None.
    """

    from click.testing import CliRunner  # pylint: disable=import-outside-toplevel

    path = str(tmp_path / 'spd.bin')
    new_path = str(tmp_path / 'new.bin')
    _write_test_spd(path, pspd.make_test_spd())

    for args in (['--timing', 'tCL=19'], ['--timing', 'tREFI=5'], ['--cl', '3=on'], ['--voltage', '1.50v=maybe']):
        result = CliRunner().invoke(_edit_spd, args + [path, new_path])
        assert result.exit_code != 0, args
        assert 'Error' in result.output
    assert not os.path.exists(new_path)


def test_edit_xmp(tmp_path: Any) -> None:
    """
    Test edit-xmp on profile 2.

    :param tmp_path: Temporary directory.
    :return: None.
    """

    from click.testing import CliRunner  # pylint: disable=import-outside-toplevel

    path = str(tmp_path / 'spd.bin')
    new_path = str(tmp_path / 'new.bin')
    data = pspd.make_test_spd(pxmp.make_test_xmp())
    _write_test_spd(path, data)

    result = CliRunner().invoke(_edit_xmp, [
        '--profile', '2',
        '--clock-ticks', '10',
        '--voltage', '1.65',
        '--dimms', '2',
        '--timing', 'tCWL=9',
        path,
        new_path,
    ])
    assert result.exit_code == 0, result.output

    new_data = _read_test_spd(new_path)
    assert new_data[:0xb0 + 9] != data[:0xb0 + 9]
    assert new_data[0xb0 + 9:0xb0 + 44] == data[0xb0 + 9:0xb0 + 44]
    xmp = pspd.SpdImage(new_data).xmp
    assert xmp.get_dimms_per_channel(2) == 2
    profile = xmp.profile(2)
    assert profile.frequency == 800.0
    assert profile.voltage == 165
    assert profile.get_timing(Timing.CL) == 9
    assert profile.get_timing(Timing.CWL) == 9


def test_fix_spd_checksum_and_json(tmp_path: Any) -> None:
    """
    Test fix-spd-checksum, spd2json and json2spd.

    :param tmp_path: Temporary directory.
    :return: None.
    """

    from click.testing import CliRunner  # pylint: disable=import-outside-toplevel

    data = pspd.make_test_spd(pxmp.make_test_xmp())
    bad_data = bytearray(data)
    bad_data[0x7e] ^= 0xff
    path = str(tmp_path / 'spd.bin')
    fixed_path = str(tmp_path / 'fixed.bin')
    json_path = str(tmp_path / 'spd.json')
    new_path = str(tmp_path / 'new.bin')
    _write_test_spd(path, bytes(bad_data))

    runner = CliRunner()
    result = runner.invoke(_fix_spd_checksum, [path, fixed_path])
    assert result.exit_code == 0, result.output
    assert 'Invalid checksum' in result.output
    assert _read_test_spd(fixed_path) == data

    result = runner.invoke(_spd_to_json, [fixed_path, json_path])
    assert result.exit_code == 0, result.output
    result = runner.invoke(_json_to_spd, [json_path, new_path])
    assert result.exit_code == 0, result.output
    assert _read_test_spd(new_path) == data


def test_blank_spd(tmp_path: Any) -> None:
    """
    Test parse-spd and edit-spd on erased 256 byte EEPROM.

    :param tmp_path: Temporary directory.
    :return: None.
    """

    from click.testing import CliRunner  # pylint: disable=import-outside-toplevel

    path = str(tmp_path / 'spd.bin')
    new_path = str(tmp_path / 'new.bin')
    _write_test_spd(path, bytes(pspd.DDR3_SPD_FULL_LEN))

    runner = CliRunner()
    result = runner.invoke(_parse_spd, [path])
    assert result.exit_code == 0, result.output
    assert 'Frequency: 0.00 MHz' in result.output
    assert 'No XMP found' in result.output

    result = runner.invoke(_edit_spd, ['--timing', 'tRCD=5', path, new_path])
    assert result.exit_code != 0
    assert 'Error' in result.output
    assert not os.path.exists(new_path)

    result = runner.invoke(_edit_spd, ['--frequency', '800', '--timing', 'tRCD=5', path, new_path])
    assert result.exit_code == 0, result.output
    spd = pspd.SpdImage(_read_test_spd(new_path))
    assert spd.frequency == 800.0
    assert spd.get_timing(Timing.RCD) == 5


def test_json_to_spd_bad_json(tmp_path: Any) -> None:
    """
    Test json2spd reports malformed input without traceback.

    :param tmp_path: Temporary directory.
    :return: None.
    """

    from click.testing import CliRunner  # pylint: disable=import-outside-toplevel

    json_path = str(tmp_path / 'spd.json')
    spd_path = str(tmp_path / 'spd.bin')
    raw_spd = json.loads(pspd.DDR3_SPD.json_dumps(pspd.DDR3_SPD.unpack(pspd.make_test_spd())))
    bad_raw_spd = dict(raw_spd, tCKmin=300)
    del raw_spd['crc']

    for json_str, message in (
            ('{"spd_bytes_used": ', 'Invalid JSON'),
            ('[1, 2]', 'Expected JSON object'),
            (json.dumps(raw_spd), 'Missing fields'),
            (json.dumps(bad_raw_spd), 'Invalid field value'),
    ):
        with open(json_path, 'w') as json_f:
            json_f.write(json_str)
        result = CliRunner().invoke(_json_to_spd, [json_path, spd_path])
        assert result.exit_code == 1, result.output
        assert isinstance(result.exception, SystemExit)
        assert message in result.output
    assert not os.path.exists(spd_path)


if __name__ == '__main__':
    cli_main()
