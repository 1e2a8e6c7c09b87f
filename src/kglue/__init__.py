from kglue.kglue import opack_encode, opack_decode, tlv_new, tlv_get_data, tlv_get_uint, load_archive, \
    archive_to_plist, plist_dumps

from kglue.nskeyedarchive import NSKeyedArchive, NSType, NSItem
from kglue.tlv import TLVBuffer
from kglue.plist import PlistType
from kglue.exceptions import MalformedOpackException, MalformedTLVException, MalformedArchiveException, \
    UnexpectedTypeException, UIDOutOfRangeException, UnsupportedClassException
from kglue.util import KGLUE_VERSION, ignore, opts, log, LogLevel
