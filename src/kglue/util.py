#
#  kglue | kglue
#  util.py
#
#  This file contains miscellaneous utilities used around kglue
#
#  This file is part of kglue. kglue is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) 0cyn 2021.
#
import re
import sys

from importlib import metadata

from kglue.log import log, LogLevel

from pygments import highlight
from pygments.formatters.terminal import TerminalFormatter
from pygments.lexers.data import JsonLexer
from pygments.lexers.html import XmlLexer

try:
    KGLUE_VERSION = metadata.version('kglue')
except metadata.PackageNotFoundError:
    KGLUE_VERSION = '1.0.0'

UINT64_MASK = 0xFFFFFFFFFFFFFFFF


def version_output():
    print(f'kglue v{KGLUE_VERSION}')


class ignore:
    # drop (and warn about) FROM_PLIST dict children of unsupported kinds instead of raising
    FROM_PLIST_ERRORS = True


class opts:
    DISABLE_COLOR = False
    # recursion cap for opack, merge_object and to_plist
    MAX_DEPTH = 512


def highlight_xml(input):
    if opts.DISABLE_COLOR:
        return input
    formatter = TerminalFormatter()
    return highlight(input, XmlLexer(), formatter)


def highlight_json(input):
    if opts.DISABLE_COLOR:
        return input
    formatter = TerminalFormatter()
    return highlight(input, JsonLexer(), formatter)


def uint_to_int(val, bits):
    """
    Assume an int was read from binary as an unsigned int,

    decode it as a two's compliment signed integer

    :param val:
    :param bits:
    :return:
    """
    val &= (1 << bits) - 1
    if (val & (1 << (bits - 1))) != 0:  # if sign bit is set e.g., 8bit: 128-255
        val = val - (1 << bits)         # compute negative value
    return val


def to_uint64(val: int) -> int:
    """
    Store an int the way the tree stores sint values: as its 64-bit two's complement pattern.

    :raises OverflowError: if val does not fit in 64 bits either way
    """
    if val < -(1 << 63) or val > UINT64_MASK:
        raise OverflowError(f'{val} does not fit in 64 bits')
    return val & UINT64_MASK


ansi_escape = re.compile(r'(?:\x1B[@-_]|[\x80-\x9F])[0-?]*[ -/]*[@-~]')


def strip_ansi(msg):
    return ansi_escape.sub('', msg)


def kglue_print(msg, file=None):
    if file is None:
        file = sys.stdout
    if file.isatty():
        print(msg, file=file)
    else:
        print(strip_ansi(msg), file=file)
