#
#  kglue | kglue
#  exceptions.py
#
#  Custom Exceptions raised by the OPACK, TLV8 and NSKeyedArchiver code
#
#  Lookups that simply find nothing do not raise; they return None.
#
#  This file is part of kglue. kglue is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) kat 2021.
#

class MalformedOpackException(Exception):
    """
    OPACK bytes do not follow the wire format (truncated payload, unknown tag byte, bad key, misplaced terminator)
    """


class MalformedTLVException(Exception):
    """
    A TLV8 record declares more bytes than the buffer holds
    """


class MalformedArchiveException(Exception):
    """
    A plist is not a valid NSKeyedArchiver archive ($archiver, $version, $top or $objects missing or wrong)
    """


class UnexpectedTypeException(TypeError):
    """
    A tree node has the wrong kind for the requested operation
    """


class UIDOutOfRangeException(IndexError):
    """
    A UID points past the end of $objects
    """


class UnsupportedClassException(Exception):
    """
    to_plist() found a class it does not know how to project
    """
