#
#  kglue | kglue
#  plist.py
#
#  Property-list tree helpers.
#
#  The tree is plistlib's object model: None, bool, int, plistlib.UID, float, datetime, str, bytes, list and
#   (str-keyed, insertion ordered) dict. This file adds the bits the codecs need on top of that: node typing,
#   deep copies that keep UIDs distinct from ints, UID walking, and format sniffing for raw plist bytes.
#
#  This file is part of kglue. kglue is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) kat 2021.
#

import plistlib
from datetime import datetime
from enum import Enum
from plistlib import UID
from typing import Iterator, Optional

from kglue.exceptions import UnexpectedTypeException
from kglue.log import log

BPLIST_MAGIC = b'bplist00'
XML_PROLOG = b'<?xml'
PLIST_TAG = b'<plist'

# key used by XML plists to carry a UID
CF_UID_KEY = 'CF$UID'


class PlistType(Enum):
    NULL = 0
    BOOLEAN = 1
    UINT = 2
    UID = 3
    REAL = 4
    DATE = 5
    STRING = 6
    KEY = 7
    DATA = 8
    ARRAY = 9
    DICT = 10


def node_type(node) -> PlistType:
    """
    Get the PlistType of a tree node.

    bool is checked before int, and UID before either, since a UID must never be mistaken for an integer.

    :raises UnexpectedTypeException: node is not a plist tree value
    """
    if node is None:
        return PlistType.NULL
    if isinstance(node, UID):
        return PlistType.UID
    if isinstance(node, bool):
        return PlistType.BOOLEAN
    if isinstance(node, int):
        return PlistType.UINT
    if isinstance(node, float):
        return PlistType.REAL
    if isinstance(node, datetime):
        return PlistType.DATE
    if isinstance(node, str):
        return PlistType.STRING
    if isinstance(node, (bytes, bytearray)):
        return PlistType.DATA
    if isinstance(node, (list, tuple)):
        return PlistType.ARRAY
    if isinstance(node, dict):
        return PlistType.DICT
    raise UnexpectedTypeException(f'{type(node).__name__} is not a plist node type')


def copy(node):
    """
    Deep copy a tree. Containers are rebuilt, UIDs are re-created, immutable scalars are shared.
    """
    if isinstance(node, dict):
        return {key: copy(value) for key, value in node.items()}
    if isinstance(node, (list, tuple)):
        return [copy(item) for item in node]
    if isinstance(node, UID):
        return UID(node.data)
    if isinstance(node, bytearray):
        return bytes(node)
    return node


def iter_uids(node) -> Iterator[UID]:
    """Yield every UID in a tree, depth first."""
    stack = [node]
    while stack:
        cur = stack.pop()
        if isinstance(cur, UID):
            yield cur
        elif isinstance(cur, dict):
            stack.extend(reversed(list(cur.values())))
        elif isinstance(cur, (list, tuple)):
            stack.extend(reversed(cur))


def _cf_uids_to_uids(node):
    if isinstance(node, dict):
        if len(node) == 1 and CF_UID_KEY in node and isinstance(node[CF_UID_KEY], int) \
                and not isinstance(node[CF_UID_KEY], bool):
            return UID(node[CF_UID_KEY])
        return {key: _cf_uids_to_uids(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_cf_uids_to_uids(item) for item in node]
    return node


def _uids_to_cf_uids(node):
    if isinstance(node, UID):
        return {CF_UID_KEY: node.data}
    if isinstance(node, dict):
        return {key: _uids_to_cf_uids(value) for key, value in node.items()}
    if isinstance(node, (list, tuple)):
        return [_uids_to_cf_uids(item) for item in node]
    return node


def sniff_format(data: bytes) -> Optional[plistlib.PlistFormat]:
    """
    Identify plist bytes by their first few bytes.

    :return: plistlib.FMT_BINARY, plistlib.FMT_XML, or None if the data is neither
    """
    if data[:len(BPLIST_MAGIC)] == BPLIST_MAGIC:
        return plistlib.FMT_BINARY
    if data[:len(XML_PROLOG)] == XML_PROLOG or data[:len(PLIST_TAG)] == PLIST_TAG:
        return plistlib.FMT_XML
    return None


def loads(data: bytes):
    """
    Parse binary or XML plist bytes into a tree.

    XML CF$UID dictionaries come back as UIDs.

    :return: the tree, or None if the bytes are not a plist this function recognizes
    :raises plistlib.InvalidFileException: the bytes carry a plist signature but do not parse
    """
    fmt = sniff_format(data)
    if fmt is None:
        log.debug("data is neither a binary nor an XML plist")
        return None

    tree = plistlib.loads(bytes(data), fmt=fmt)
    if fmt == plistlib.FMT_XML:
        tree = _cf_uids_to_uids(tree)
    return tree


def dumps(tree, fmt=plistlib.FMT_XML, sort_keys=False) -> bytes:
    """
    Serialize a tree as a plist.

    UIDs are written natively to binary plists and as CF$UID dictionaries to XML plists.
    """
    if fmt == plistlib.FMT_XML:
        tree = _uids_to_cf_uids(tree)
    return plistlib.dumps(tree, fmt=fmt, sort_keys=sort_keys)
