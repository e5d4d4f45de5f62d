# SPDX-License-Identifier: AGPL-3.0-or-later
"""
Decoder, editor and encoder for DDR3 SPD images with XMP profiles.
"""
