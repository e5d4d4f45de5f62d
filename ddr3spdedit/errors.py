# SPDX-License-Identifier: AGPL-3.0-or-later
"""
Exceptions raised while decoding or editing SPD images.
"""


class SpdError(Exception):
    """
    Base class for all SPD editing errors.
    """


class SizeError(SpdError, ValueError):
    """
    Input is shorter than the structure being decoded.
    """


class FormatError(SpdError, ValueError):
    """
    Input does not carry the expected magic bytes.
    """


class RangeError(SpdError, ValueError):
    """
    Value can not be stored: tick count below one, unsupported CL, unknown name, too wide for its field.
    """


class SaveError(SpdError, OSError):
    """
    Serialized image could not be written.
    """
