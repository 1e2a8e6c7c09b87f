#
#  kglue | kglue
#  kglue.py
#
#  Outward facing API
#
#  Most of these are one line long; they exist so scripts have a stable surface to call while the modules behind
#   them get refactored.
#
#  This file is part of kglue. kglue is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) kat 2021.
#

import plistlib
from typing import BinaryIO, Optional, Union

from kglue import opack, plist, tlv
from kglue.nskeyedarchive import NSKeyedArchive
from kglue.tlv import TLVBuffer


def opack_encode(tree) -> bytes:
    """
    Encode a plist tree (bool, int, float, datetime, str, bytes, list, dict) as OPACK.

    :param tree: Tree to encode
    :return: OPACK bytes
    """
    return opack.encode(tree)


def opack_decode(data: Union[bytes, bytearray, BinaryIO], into=None):
    """
    Decode OPACK bytes (or a file opened with 'rb') into a plist tree.

    :param data: bytes or binary file
    :param into: Optional list/dict the top-level values are merged into
    :return:
    """
    if hasattr(data, 'read'):
        data = data.read()
    return opack.decode(data, into)


def tlv_new() -> TLVBuffer:
    return TLVBuffer()


def tlv_get_data(data: bytes, tag: int) -> Optional[bytes]:
    """
    Get the full value of `tag` from a TLV8 stream, joining values that were split over several records.

    :param data: TLV8 bytes
    :param tag: tag to look for
    :return: The value, or None if the tag isn't present
    """
    return tlv.copy_data(data, tag)


def tlv_get_uint(data: bytes, tag: int) -> Optional[int]:
    return tlv.get_uint(data, tag)


def load_archive(fp: Union[bytes, bytearray, BinaryIO, dict]) -> Optional[NSKeyedArchive]:
    """
    Load an NSKeyedArchiver archive.

    :param fp: binary/XML plist bytes, a file opened with 'rb', or an already parsed plist dict
    :return: The archive, or None if the bytes aren't a plist
    """
    if isinstance(fp, dict):
        return NSKeyedArchive.new_from_tree(fp)
    if hasattr(fp, 'read'):
        fp = fp.read()
    return NSKeyedArchive.new_from_bytes(fp)


def archive_to_plist(archive: Union[NSKeyedArchive, bytes, bytearray, BinaryIO]):
    """
    Flatten an archive (or archive bytes) into plain plist values.
    """
    if not isinstance(archive, NSKeyedArchive):
        archive = load_archive(archive)
        if archive is None:
            return None
    return archive.to_plist()


def plist_dumps(tree, xml=True) -> bytes:
    return plist.dumps(tree, fmt=plistlib.FMT_XML if xml else plistlib.FMT_BINARY)
