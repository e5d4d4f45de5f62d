# SPDX-License-Identifier: AGPL-3.0-or-later
"""
Named field tables on top of the struct module.

Each binary layout is described as rows of (struct format, field name, formatter). Unpacking gives an
ordered dict of fields, packing an unmodified dict gives back the exact input bytes.
"""

import abc
from collections import OrderedDict
import io
import json
import struct
from typing import Any, Iterable, Optional, TextIO


class BaseFormatterReader:
    """
    Converts a field value to text and back.
    """

    @abc.abstractmethod
    def format(self, value: Any) -> str:
        """
        Convert value into string.

        :param value: Value.
        :return: Value as string.
        """

    @abc.abstractmethod
    def read(self, str_value: str) -> Any:
        """
        Convert string to value.

        :param str_value: Value as string.
        :return: Value.
        """


class IntBin(BaseFormatterReader):
    """
    Integer as zero-padded binary literal.
    """

    def __init__(self, width: int = 8) -> None:
        self._width = width

    def format(self, value: Any) -> str:
        """
        Convert value into string.

        :param value: Value.
        :return: Value as string.
        """

        return f'0b{value:0{self._width}b}'

    def read(self, str_value: str) -> Any:
        """
        Convert string to value.

        :param str_value: Value as string.
        :return: Value.
        """

        return int(str_value, 2)


class IntHex(BaseFormatterReader):
    """
    Integer as zero-padded hexadecimal literal.
    """

    def __init__(self, width: int = 2) -> None:
        self._width = width

    def format(self, value: Any) -> str:
        """
        Convert value into string.

        :param value: Value.
        :return: Value as string.
        """

        return f'0x{value:0{self._width}x}'

    def read(self, str_value: str) -> Any:
        """
        Convert string to value.

        :param str_value: Value as string.
        :return: Value.
        """

        return int(str_value, 16)


class BytesHex(BaseFormatterReader):
    """
    Bytes as space separated hex pairs.
    """

    def format(self, value: Any) -> str:
        """
        Convert value into string.

        :param value: Value.
        :return: Value as string.
        """

        return value.hex(' ')

    def read(self, str_value: str) -> Any:
        """
        Convert string to value.

        :param str_value: Value as string.
        :return: Value.
        """

        return bytes.fromhex(str_value)


class IntBitFieldStruct(BaseFormatterReader):
    """
    Integer split into named bit fields, most significant field first.

    Formatted as "name=0b..." tokens, e.g. "reserved=0b0 units=0b01 tenths=0b0101 twentieth=0b1".
    """

    def __init__(self, fields: Iterable[tuple[str, int]]) -> None:
        self._fields = tuple(fields)
        total_len = sum(field_len for _, field_len in self._fields)
        assert total_len in (8, 16, 32), \
            f'Wrong total bit field length: {total_len}'

    def format(self, value: Any) -> str:
        """
        Convert value into string.

        :param value: Value.
        :return: Value as string.
        """

        tokens = []
        for field_name, field_len in reversed(self._fields):
            tokens.append(f'{field_name}=0b{value & ((1 << field_len) - 1):0{field_len}b}')
            value >>= field_len

        assert value == 0, \
            f'Value does not fit into bit fields, leftover: {value}'

        return ' '.join(reversed(tokens))

    def read(self, str_value: str) -> Any:
        """
        Convert string to value.

        :param str_value: Value as string.
        :return: Value.
        """

        tokens = str_value.split()
        assert len(tokens) == len(self._fields), \
            f'Wrong number of bit fields: {len(tokens)} != {len(self._fields)}'

        value = 0
        for token, (field_name, field_len) in zip(tokens, self._fields):
            token_name, token_value = token.split('=', 1)
            assert token_name == field_name, \
                f'Wrong bit field name in this position: {token_name} != {field_name}'
            field_value = int(token_value, 0)
            assert (field_value >> field_len) == 0, \
                f'Value of field "{field_name}" is too long: {field_value} (must be {field_len} bits)'
            value = (value << field_len) | field_value

        return value


class Struct:
    """
    Binary structure described by a table of named fields.
    """

    def __init__(self,
                 name: str,
                 description: Iterable[tuple[str, str, Optional[BaseFormatterReader]]],
                 endianness: str = '<',
                 expected_len: Optional[int] = None):
        self._name = name
        self._struct_fmt = endianness
        self._fields: OrderedDict[str, Optional[BaseFormatterReader]] = OrderedDict()

        for field_fmt, field_name, field_conv in description:
            assert field_name not in self._fields, \
                f'Duplicate field name "{field_name}" in description of structure "{self._name}"'
            self._struct_fmt += field_fmt
            self._fields[field_name] = field_conv

        self._struct_len = struct.calcsize(self._struct_fmt)
        if expected_len is not None:
            assert self._struct_len == expected_len, \
                f'Invalid format length of structure "{self._name}": ' \
                f'{self._struct_len} != {expected_len}'

    def get_name(self) -> str:
        """
        Get name of structure.

        :return: Name.
        """

        return self._name

    def get_len(self) -> int:
        """
        Get length of structure in bytes.

        :return: Length.
        """

        return self._struct_len

    def field_names(self) -> tuple[str, ...]:
        """
        Get field names in layout order.

        :return: Field names.
        """

        return tuple(self._fields.keys())

    def unpack(self, data: bytes) -> OrderedDict[str, Any]:
        """
        Parse structure.

        :param data: Binary data, exactly as long as the structure.
        :return: Ordered dict of fields.
        """

        assert len(data) == self._struct_len, \
            f'Unable to unpack, wrong size of data for "{self._name}": ' \
            f'{len(data)} != {self._struct_len}'

        return OrderedDict(zip(self._fields.keys(), struct.unpack(self._struct_fmt, data)))

    def pack(self, struct_dict: OrderedDict[str, Any]) -> bytes:
        """
        Generate structure.

        :param struct_dict: Ordered dict of fields.
        :return: Binary data.
        """

        return struct.pack(self._struct_fmt, *(struct_dict[field_name] for field_name in self._fields))

    def from_json_dict(self, raw_struct: dict[str, Any]) -> OrderedDict[str, Any]:
        """
        Convert dict with formatted values (as loaded from JSON) into struct dict.

        :param raw_struct: Dict loaded from JSON.
        :return: Ordered dict of fields.
        """

        missing = [field_name for field_name in self._fields if field_name not in raw_struct]
        assert not missing, \
            f'Missing fields for "{self._name}": {", ".join(missing)}'

        struct_dict = OrderedDict()
        for field_name, field_conv in self._fields.items():
            field_value = raw_struct[field_name]
            struct_dict[field_name] = field_value if field_conv is None else field_conv.read(field_value)
        return struct_dict

    def json_load(self, file_obj: TextIO) -> OrderedDict[str, Any]:
        """
        Load structure from JSON file.

        :param file_obj: File to read from.
        :return: Ordered dict of fields.
        """

        return self.from_json_dict(json.load(file_obj))

    def json_loads(self, json_str: str) -> OrderedDict[str, Any]:
        """
        Load structure from JSON string.

        :param json_str: String containing JSON.
        :return: Ordered dict of fields.
        """

        return self.json_load(io.StringIO(json_str))

    def _formatted(self, struct_dict: OrderedDict[str, Any]) -> Iterable[tuple[str, Any]]:
        for field_name, field_value in struct_dict.items():
            field_conv = self._fields[field_name]
            if field_conv is not None:
                field_value = field_conv.format(field_value)
            yield field_name, field_value

    def json_dump(self, struct_dict: OrderedDict[str, Any], file_obj: TextIO) -> None:
        """
        Dump structure into JSON file, one field per line.

        :param struct_dict: Ordered dict of fields.
        :param file_obj: File to write into.
        :return: None.
        """

        lines = [
            f'    {json.dumps(field_name)}: {json.dumps(field_value)}'
            for field_name, field_value in self._formatted(struct_dict)
        ]
        file_obj.write('{\n' + ',\n'.join(lines) + '\n}\n')

    def json_dumps(self, struct_dict: OrderedDict[str, Any]) -> str:
        """
        Dump structure into JSON string.

        :param struct_dict: Ordered dict of fields.
        :return: JSON.
        """

        str_buf = io.StringIO()
        self.json_dump(struct_dict, str_buf)
        return str_buf.getvalue()

    def print(self, struct_dict: OrderedDict[str, Any], indent: int = 8) -> None:
        """
        Pretty-print structure, field names aligned to the right.

        :param struct_dict: Ordered dict of fields.
        :param indent: Number of spaces before each line.
        :return: None.
        """

        name_len = max(len(field_name) for field_name in self._fields)
        for field_name, field_value in self._formatted(struct_dict):
            print(f'{" " * indent}{field_name:>{name_len}}: {field_value}')


_TEST_DESCRIPTION = (
    ('B', 'flags', IntBin(8)),
    ('b', 'offset', None),
    ('H', 'word', IntHex(4)),
    ('3s', 'blob', BytesHex()),
)


def test_formatters() -> None:
    """
    Test IntBin, IntHex and BytesHex.

    :return: None.
    """

    assert IntBin(8).format(5) == '0b00000101'
    assert IntBin(8).read('0b00000101') == 5
    assert IntHex(4).format(0x31c3) == '0x31c3'
    assert IntHex(4).read('0x31c3') == 0x31c3
    assert BytesHex().format(b'\x0c\x4a') == '0c 4a'
    assert BytesHex().read('0c 4a') == b'\x0c\x4a'


def test_int_bit_field_struct() -> None:
    """
    Test IntBitFieldStruct.

    :return: None.
    """

    fmt = IntBitFieldStruct([('reserved', 1), ('units', 2), ('tenths', 4), ('twentieth', 1)])
    str_val = fmt.format(0b0_01_0101_1)
    assert str_val == 'reserved=0b0 units=0b01 tenths=0b0101 twentieth=0b1'
    assert fmt.read(str_val) == 0b0_01_0101_1


def test_struct_unpack_and_pack() -> None:
    """
    Unpack, pack again, check that result is the same.

    :return: None.
    """

    test_struct = Struct('Test', _TEST_DESCRIPTION, expected_len=7)
    data = bytes([0x81, 0xfe, 0x34, 0x12, 1, 2, 3])
    fields = test_struct.unpack(data)
    assert fields['flags'] == 0x81
    assert fields['offset'] == -2
    assert fields['word'] == 0x1234
    assert fields['blob'] == b'\x01\x02\x03'
    assert test_struct.pack(fields) == data
    assert test_struct.field_names() == ('flags', 'offset', 'word', 'blob')


def test_struct_json() -> None:
    """
    Test JSON serialization and deserialization.

    :return: None.
    """

    test_struct = Struct('Test', _TEST_DESCRIPTION)
    fields = test_struct.unpack(bytes([0x81, 0xfe, 0x34, 0x12, 1, 2, 3]))
    json_str = test_struct.json_dumps(fields)
    assert '"word": "0x1234"' in json_str
    assert test_struct.json_loads(json_str) == fields

    try:
        test_struct.json_loads('{"flags": "0b1"}')
    except AssertionError:
        # As expected, fields are missing.
        pass
    else:
        assert False, 'No error!'
