#
#  kglue | kglue
#  nskeyedarchive.py
#
#  Build, parse and flatten NSKeyedArchiver archives.
#
#  An archive is a plist dict:
#
#       $archiver   "NSKeyedArchiver"
#       $version    100000
#       $objects    flat object table, slot 0 is always the string "$null"
#       $top        name -> UID of the entry point object(s)
#
#  Objects point at each other with UIDs (indexes into $objects). Every class instance is written as two
#   consecutive slots, the instance dict {"$class": UID(n + 1), ...properties} at n and the class-info dict
#   {"$classes": [...], "$classname": ...} at n + 1. get_classname() relies on that pairing.
#
#  An NSKeyedArchive is a plain mutable object; sharing one between threads is up to the caller.
#
#  This file is part of kglue. kglue is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) kat 2021.
#

import plistlib
from enum import IntEnum
from plistlib import UID
from typing import Any, Dict, Mapping, NamedTuple, Optional, Union
from xml.parsers.expat import ExpatError

from kglue import plist
from kglue.exceptions import MalformedArchiveException, UnexpectedTypeException, UIDOutOfRangeException, \
    UnsupportedClassException
from kglue.log import log
from kglue.util import ignore, opts, to_uint64, uint_to_int, highlight_xml, kglue_print

NS_KEYED_ARCHIVER_NAME = 'NSKeyedArchiver'
NS_KEYED_ARCHIVER_VERSION = 100000
NS_NULL = '$null'

DEFAULT_TOP_KEY = '$0'
FALLBACK_TOP_KEY = 'root'


class NSType(IntEnum):
    INTEGER = 1
    BOOLEAN = 2
    CHARS = 3
    STRING = 4
    REAL = 5
    ARRAY = 6
    DATA = 7
    INTREF = 8
    NSMUTABLESTRING = 9
    NSSTRING = 10
    NSMUTABLEARRAY = 11
    NSARRAY = 12
    NSMUTABLEDICTIONARY = 13
    NSDICTIONARY = 14
    NSDATE = 15
    NSURL = 16
    NSMUTABLEDATA = 17
    NSDATA = 18
    NSKEYEDARCHIVE = 19
    FROM_PLIST = 20


class NSItem(NamedTuple):
    """
    A typed value, as taken by NSARRAY/NSURL values. Plain (type, value) tuples work just as well.
    """
    type: NSType
    value: Any


CLASS_CHAINS = {
    NSType.NSMUTABLESTRING: ('NSMutableString', 'NSString', 'NSObject'),
    NSType.NSSTRING: ('NSString', 'NSObject'),
    NSType.NSMUTABLEARRAY: ('NSMutableArray', 'NSArray', 'NSObject'),
    NSType.NSARRAY: ('NSArray', 'NSObject'),
    NSType.NSMUTABLEDICTIONARY: ('NSMutableDictionary', 'NSDictionary', 'NSObject'),
    NSType.NSDICTIONARY: ('NSDictionary', 'NSObject'),
    NSType.NSDATE: ('NSDate', 'NSObject'),
    NSType.NSMUTABLEDATA: ('NSMutableData', 'NSData', 'NSObject'),
    NSType.NSDATA: ('NSMutableData', 'NSData', 'NSObject'),
    NSType.NSURL: ('NSURL', 'NSObject'),
}

# written inline into the property slot, never appended to $objects
INLINE_TYPES = (NSType.INTEGER, NSType.CHARS, NSType.ARRAY, NSType.DATA)

DICTIONARY_CLASSES = ('NSDictionary', 'NSMutableDictionary')
ARRAY_CLASSES = ('NSArray', 'NSMutableArray')

UIDLike = Union[int, UID]


def _uid_int(uid: UIDLike) -> int:
    if isinstance(uid, UID):
        return uid.data
    if isinstance(uid, bool) or not isinstance(uid, int):
        raise UnexpectedTypeException(f'{uid!r} is not a UID')
    return uid


def _is_primitive(node) -> bool:
    return isinstance(node, (bool, int, float, str, bytes)) and not isinstance(node, UID)


class NSKeyedArchive:
    """
    NSKeyedArchiver archive builder/parser.

    Create an empty archive with NSKeyedArchive(), or load one with NSKeyedArchive.new_from_tree() /
        NSKeyedArchive.new_from_bytes().

    Building:

        archive = NSKeyedArchive()
        uid = archive.add_top_class('NSDictionary', 'NSObject')
        archive.nsdictionary_add_item(uid, 'name', NSType.STRING, 'value')
        data = archive.to_bytes()

    Typed values are passed as (NSType, value):

        INTEGER, INTREF         int
        BOOLEAN                 bool
        CHARS, STRING           str
        REAL, NSDATE            float (NSDATE: seconds since 2001-01-01)
        ARRAY                   plist list, copied inline
        DATA, NSDATA            bytes
        NSSTRING                str
        NSARRAY                 iterable of (NSType, value)
        NSDICTIONARY            iterable of (key, NSType, value), or a mapping of key -> (NSType, value)
        NSURL                   ((NSType, value) for NS.base, (NSType, value) for NS.relative); either may be None
        NSKEYEDARCHIVE          another NSKeyedArchive, merged in
        FROM_PLIST              plist str, dict or list, converted to NSMutableString/NSDictionary/NSMutableArray

    .uid tracks the index of the last appended object. A fresh archive starts at 1, the first free slot.
    """

    def __init__(self):
        self.dict: Optional[Dict[str, Any]] = {
            '$version': NS_KEYED_ARCHIVER_VERSION,
            '$objects': [NS_NULL],
            '$archiver': NS_KEYED_ARCHIVER_NAME
        }
        self.uid = 1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.free()

    def __repr__(self):
        if self.dict is None:
            return '<NSKeyedArchive (freed)>'
        return f'<NSKeyedArchive objects={len(self.dict.get("$objects", []))} top={list(self.dict.get("$top", {}))}>'

    def free(self):
        self.dict = None

    # Loading

    @classmethod
    def new_from_tree(cls, tree) -> 'NSKeyedArchive':
        """
        Load an archive from an already parsed plist.

        The tree is deep copied; later changes to either side don't affect the other.

        :raises MalformedArchiveException: tree is not an NSKeyedArchiver archive
        """
        def bad(msg):
            log.error(msg)
            raise MalformedArchiveException(msg)

        if not isinstance(tree, dict):
            bad('invalid parameter, dict expected')

        if tree.get('$archiver') != NS_KEYED_ARCHIVER_NAME:
            bad('plist is not in NSKeyedArchiver format ($archiver key not found or invalid)')

        version = tree.get('$version')
        if type(version) is not int or version != NS_KEYED_ARCHIVER_VERSION:
            bad(f'unexpected NSKeyedArchiver version encountered ({version} != {NS_KEYED_ARCHIVER_VERSION})')

        top = tree.get('$top')
        if not isinstance(top, dict):
            bad('$top node not found')
        top_uid = top.get(DEFAULT_TOP_KEY)
        if top_uid is None:
            top_uid = top.get(FALLBACK_TOP_KEY)
        if not isinstance(top_uid, UID):
            bad(f"uid '{DEFAULT_TOP_KEY}' or '{FALLBACK_TOP_KEY}' not found in $top dict")

        objects = tree.get('$objects')
        if not isinstance(objects, list) or len(objects) == 0:
            bad('$objects node not found')
        if top_uid.data >= len(objects):
            bad(f'top uid {top_uid.data} points past the end of $objects ({len(objects)} objects)')

        archive = cls()
        archive.dict = plist.copy(tree)
        archive.uid = len(objects) - 1
        log.debug(f'Loaded archive with {len(objects)} objects, top uid {top_uid.data}')
        return archive

    @classmethod
    def new_from_bytes(cls, data: bytes) -> Optional['NSKeyedArchive']:
        """
        Load an archive from binary or XML plist bytes.

        :return: The archive, or None if the data does not look like a plist at all
        :raises MalformedArchiveException: data looks like a plist but doesn't parse, or isn't an archive
        """
        if plist.sniff_format(data) is None:
            log.debug("data is neither a binary nor an XML plist")
            return None
        try:
            tree = plist.loads(data)
        except (plistlib.InvalidFileException, ExpatError, ValueError) as ex:
            log.error(f"Can't parse plist from data: {ex}")
            raise MalformedArchiveException(f"Can't parse plist from data: {ex}") from ex
        if tree is None:
            log.error("plist data holds no root node")
            raise MalformedArchiveException("plist data holds no root node")
        return cls.new_from_tree(tree)

    # Object table

    def get_plist_ref(self) -> dict:
        return self.dict

    def _root(self) -> dict:
        if self.dict is None:
            log.error('archive has been freed')
            raise MalformedArchiveException('archive has been freed')
        return self.dict

    def get_objects(self) -> list:
        objects = self._root().get('$objects')
        if not isinstance(objects, list):
            log.error('$objects node not found!')
            raise MalformedArchiveException('$objects node not found')
        return objects

    def get_object_by_uid(self, uid: UIDLike):
        uid = _uid_int(uid)
        objects = self.get_objects()
        if not 0 <= uid < len(objects):
            log.error(f'unable to get object node with uid {uid}')
            raise UIDOutOfRangeException(f'uid {uid} is out of range ({len(objects)} objects)')
        return objects[uid]

    def get_class_by_uid(self, uid: UIDLike) -> dict:
        obj = self.get_object_by_uid(uid)
        if not isinstance(obj, dict):
            log.error(f'the uid {_uid_int(uid)} does not reference a valid class with node type dict!')
            raise UnexpectedTypeException(f'uid {_uid_int(uid)} is a {type(obj).__name__}, not a class')
        return obj

    def _next_uid(self) -> int:
        return len(self.get_objects())

    def append_object(self, obj) -> int:
        """Append a raw node to $objects, returning its UID."""
        objects = self.get_objects()
        objects.append(obj)
        self.uid = len(objects) - 1
        log.debug_tm(f'appended object {self.uid}: {obj!r}')
        return self.uid

    # Classes and $top

    def append_class(self, classname: str, *ancestors: str) -> int:
        """
        Append an instance/class-info pair.

        :param classname: e.g. 'NSMutableArray'
        :param ancestors: superclasses, nearest first, e.g. 'NSArray', 'NSObject'
        :return: UID of the instance dict; the class-info dict sits right after it
        """
        if not classname:
            log.error('missing classname!')
            raise ValueError('missing classname')

        instance_uid = self._next_uid()
        self.append_object({'$class': UID(instance_uid + 1)})
        self.append_object({
            '$classes': [classname, *ancestors],
            '$classname': classname
        })
        log.debug_more(f'appended class {classname} at uid {instance_uid}')
        return instance_uid

    def add_top_class_uid(self, uid: UIDLike):
        root = self._root()
        top = root.get('$top')
        if top is None:
            root['$top'] = {DEFAULT_TOP_KEY: UID(_uid_int(uid))}
        else:
            top[f'${len(top)}'] = UID(_uid_int(uid))

    def add_top_class(self, classname: str, *ancestors: str) -> int:
        uid = self.append_class(classname, *ancestors)
        self.add_top_class_uid(uid)
        return uid

    def set_top_ref_key_name(self, keyname: str):
        """
        Rename the first $top entry, keeping its position and UID.

        :raises ValueError: keyname is already used by another $top entry
        """
        top = self._root().get('$top')
        if not top:
            return
        entries = list(top.items())
        if any(key == keyname for key, _ in entries[1:]):
            log.error(f"$top already has an entry named '{keyname}'")
            raise ValueError(f"$top already has an entry named '{keyname}'")
        top.clear()
        top[keyname] = entries[0][1]
        for key, value in entries[1:]:
            top[key] = value

    def get_class_uid(self, classref: Optional[str] = None) -> int:
        """
        Look up a $top entry.

        :param classref: $top key; None tries '$0' and then 'root'
        :return: the UID, or 0 if there is no such entry
        """
        top = self.dict.get('$top') if self.dict is not None else None
        if not isinstance(top, dict):
            log.debug('$top node not found')
            return 0
        node = top.get(classref if classref is not None else DEFAULT_TOP_KEY)
        if node is None and classref is None:
            node = top.get(FALLBACK_TOP_KEY)
        if not isinstance(node, UID):
            log.debug(f"uid for '{classref}' not found in $top dict")
            return 0
        return node.data

    def get_classname(self, uid: UIDLike) -> Optional[str]:
        obj = self.get_object_by_uid(uid)
        if not isinstance(obj, dict):
            return None

        class_uid = obj.get('$class')
        if not isinstance(class_uid, UID):
            log.error('$class is not a uid node')
            return None
        if class_uid.data == 0:
            log.error("can't get $class uid val")
            return None

        cls = self.get_object_by_uid(class_uid)
        if not isinstance(cls, dict):
            return None
        classname = cls.get('$classname')
        if not isinstance(classname, str):
            log.error('invalid $classname in class dict')
            return None
        return classname

    # Typed values

    def _encode_item(self, proptype: NSType, value, depth=0):
        """
        Turn a typed value into the node that gets stored in a property slot or NS.objects array.

        Object types append whatever they need to $objects and come back as a UID; inline types come back as the
            value itself.
        """
        proptype = NSType(proptype)

        if proptype == NSType.INTEGER:
            return self._check_uint(value)
        if proptype == NSType.CHARS:
            return self._check_str(value)
        if proptype == NSType.ARRAY:
            return plist.copy(value)
        if proptype == NSType.DATA:
            return bytes(value)
        if proptype == NSType.STRING and value == NS_NULL:
            return UID(0)
        if proptype == NSType.NSKEYEDARCHIVE:
            return self._merge_archive(value)
        if proptype == NSType.FROM_PLIST:
            ref = self._encode_from_plist(value, depth)
            if ref is None:
                raise UnexpectedTypeException(f'plist type {type(value).__name__} is not implemented for conversion')
            return ref

        ref = UID(self._next_uid())
        self._append_typed(proptype, value, depth)
        return ref

    def _append_typed(self, proptype: NSType, value, depth=0) -> int:
        """Append the $objects entry (or entries) for an object type; returns the first UID."""
        if depth > opts.MAX_DEPTH:
            raise UnexpectedTypeException(f'values are nested deeper than {opts.MAX_DEPTH} levels')

        if proptype == NSType.INTREF:
            return self.append_object(self._check_uint(value))
        if proptype == NSType.BOOLEAN:
            return self.append_object(bool(value))
        if proptype == NSType.STRING:
            return self.append_object(self._check_str(value))
        if proptype == NSType.REAL:
            return self.append_object(float(value))

        if proptype not in CLASS_CHAINS:
            log.error(f'{proptype.name} is not an object type, can\'t add it as class!')
            raise UnexpectedTypeException(f'{proptype.name} is not an object type')

        uid = self.append_class(*CLASS_CHAINS[proptype])
        instance = self.get_class_by_uid(uid)

        if proptype in (NSType.NSSTRING, NSType.NSMUTABLESTRING):
            instance['NS.string'] = self._encode_item(NSType.STRING, value, depth + 1)

        elif proptype in (NSType.NSARRAY, NSType.NSMUTABLEARRAY):
            objects = []
            for item in value:
                itemtype, itemvalue = item
                if not itemtype:
                    break
                objects.append(self._encode_item(itemtype, itemvalue, depth + 1))
            instance['NS.objects'] = objects

        elif proptype in (NSType.NSDICTIONARY, NSType.NSMUTABLEDICTIONARY):
            if isinstance(value, Mapping):
                entries = ((key, *item) for key, item in value.items())
            else:
                entries = value
            keys = []
            objects = []
            for key, itemtype, itemvalue in entries:
                if key is None or not itemtype:
                    break
                keys.append(self._encode_item(NSType.STRING, key, depth + 1))
                objects.append(self._encode_item(itemtype, itemvalue, depth + 1))
            instance['NS.keys'] = keys
            instance['NS.objects'] = objects

        elif proptype == NSType.NSDATE:
            instance['NS.time'] = self._encode_item(NSType.REAL, value, depth + 1)

        elif proptype in (NSType.NSDATA, NSType.NSMUTABLEDATA):
            instance['NS.data'] = self._encode_item(NSType.DATA, value, depth + 1)

        elif proptype == NSType.NSURL:
            base, relative = value
            if base is not None and base[0]:
                instance['NS.base'] = self._encode_item(base[0], base[1], depth + 1)
            if relative is not None and relative[0]:
                instance['NS.relative'] = self._encode_item(relative[0], relative[1], depth + 1)

        return uid

    def _encode_from_plist(self, node, depth=0) -> Optional[UID]:
        if depth > opts.MAX_DEPTH:
            raise UnexpectedTypeException(f'plist is nested deeper than {opts.MAX_DEPTH} levels')

        if isinstance(node, str):
            return self._encode_item(NSType.NSMUTABLESTRING, node, depth + 1)

        if isinstance(node, dict):
            ref = UID(self._next_uid())
            uid = self.append_class(*CLASS_CHAINS[NSType.NSDICTIONARY])
            instance = self.get_class_by_uid(uid)
            keys = []
            objects = []
            for key, value in node.items():
                if isinstance(value, bool):
                    itemtype = NSType.BOOLEAN
                elif isinstance(value, int) and not isinstance(value, UID):
                    itemtype = NSType.INTEGER
                elif isinstance(value, str):
                    itemtype = NSType.STRING
                else:
                    self._unhandled_plist_type(value, f"key '{key}'")
                    continue
                keys.append(self._encode_item(NSType.STRING, key, depth + 1))
                objects.append(self._encode_item(itemtype, value, depth + 1))
            instance['NS.keys'] = keys
            instance['NS.objects'] = objects
            return ref

        if isinstance(node, list):
            ref = UID(self._next_uid())
            uid = self.append_class(*CLASS_CHAINS[NSType.NSMUTABLEARRAY])
            instance = self.get_class_by_uid(uid)
            objects = []
            for item in node:
                child = self._encode_from_plist(item, depth + 1)
                if child is None:
                    continue
                objects.append(child)
            instance['NS.objects'] = objects
            return ref

        return self._unhandled_plist_type(node, 'value')

    @staticmethod
    def _unhandled_plist_type(node, where):
        msg = f'Unhandled plist type {type(node).__name__} for {where} when converting plist'
        if not ignore.FROM_PLIST_ERRORS:
            log.error(msg)
            raise UnexpectedTypeException(msg)
        log.warn(msg + ', skipping it')
        return None

    @staticmethod
    def _check_uint(value) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or isinstance(value, UID):
            raise UnexpectedTypeException(f'{value!r} is not an integer')
        try:
            return to_uint64(value)
        except OverflowError as ex:
            raise UnexpectedTypeException(str(ex)) from ex

    @staticmethod
    def _check_str(value) -> str:
        if not isinstance(value, str):
            raise UnexpectedTypeException(f'{value!r} is not a string')
        return value

    def set_class_property(self, uid: UIDLike, propname: str, proptype: NSType, value):
        """
        Set a property on the class instance at `uid`.

        See the class docstring for what each NSType takes. Storing STRING "$null" points the property at slot 0
            instead of appending a new string.
        """
        instance = self.get_class_by_uid(uid)
        instance[propname] = self._encode_item(proptype, value)

    def nsarray_append_item(self, uid: UIDLike, proptype: NSType, value):
        """Append one typed element to the NS.objects array of the NSArray at `uid`."""
        instance = self.get_class_by_uid(uid)
        objects = instance.get('NS.objects')
        if objects is None:
            log.debug(f'NSArray at uid {_uid_int(uid)} has no NS.objects yet, creating it')
            objects = instance['NS.objects'] = []
        elif not isinstance(objects, list):
            log.error('invalid NSArray object in archive: NS.objects is not an array')
            raise UnexpectedTypeException('NS.objects is not an array')
        objects.append(self._encode_item(proptype, value))

    def nsdictionary_add_item(self, uid: UIDLike, key: str, proptype: NSType, value):
        """Add key -> typed value to the NS.keys/NS.objects arrays of the NSDictionary at `uid`."""
        instance = self.get_class_by_uid(uid)
        for propname in ('NS.keys', 'NS.objects'):
            if propname not in instance:
                log.debug(f'NSDictionary at uid {_uid_int(uid)} has no {propname} yet, creating it')
                instance[propname] = []
            elif not isinstance(instance[propname], list):
                log.error(f'invalid NSDictionary object in archive: {propname} is not an array')
                raise UnexpectedTypeException(f'{propname} is not an array')
        instance['NS.keys'].append(self._encode_item(NSType.STRING, key))
        instance['NS.objects'].append(self._encode_item(proptype, value))

    def append_class_type(self, proptype: NSType, value) -> int:
        """
        Append a typed object to $objects on its own, without a property pointing at it.

        If the archive has no $top yet, one is created pointing at UID 1 (UID 0 for a STRING "$null").

        :return: UID of the appended object (0 for "$null")
        """
        proptype = NSType(proptype)
        if proptype in INLINE_TYPES:
            log.error(f'{proptype.name} is not an object type, can\'t add it as class!')
            raise UnexpectedTypeException(f'{proptype.name} is not an object type')

        root = self._root()
        if proptype == NSType.STRING and value == NS_NULL:
            if '$top' not in root:
                root['$top'] = {DEFAULT_TOP_KEY: UID(0)}
            return 0

        if proptype in (NSType.NSKEYEDARCHIVE, NSType.FROM_PLIST):
            uid = _uid_int(self._encode_item(proptype, value))
        else:
            uid = self._append_typed(proptype, value)

        if '$top' not in root:
            root['$top'] = {DEFAULT_TOP_KEY: UID(1)}
        return uid

    # Merging

    def _merge_archive(self, other: 'NSKeyedArchive') -> UID:
        if not isinstance(other, NSKeyedArchive):
            log.error('no nskeyedarchive argument given for type NSKEYEDARCHIVE')
            raise UnexpectedTypeException(f'{other!r} is not an NSKeyedArchive')

        top = other.get_class_uid()
        if top == 0:
            return UID(0)

        object_copy = plist.copy(other.get_object_by_uid(top))
        uid = self.append_object(object_copy)
        self.merge_object(other, object_copy)
        return UID(uid)

    def merge_object(self, source: 'NSKeyedArchive', node, depth=0):
        """
        Pull everything `node` references in `source` into this archive.

        `node` must already live in this archive's $objects. Every UID(n > 0) found in it is pointed at a fresh
            copy of source's object n, appended at the end of $objects, and that copy is merged the same way.
            UID(0) is left alone since both archives keep "$null" at slot 0.
        """
        if depth > opts.MAX_DEPTH:
            log.error('merge is nested too deep, the source archive probably has a reference cycle')
            raise MalformedArchiveException(f'object graph is deeper than {opts.MAX_DEPTH} levels')

        if isinstance(node, dict):
            slots = list(node.keys())
        elif isinstance(node, list):
            slots = range(len(node))
        else:
            return

        for slot in slots:
            value = node[slot]
            if isinstance(value, UID):
                if value.data > 0:
                    next_object = source.get_object_by_uid(value)
                    new_uid = self._next_uid()
                    log.debug_tm(f'remapping uid {value.data} -> {new_uid}')
                    node[slot] = UID(new_uid)
                    next_copy = plist.copy(next_object)
                    self.append_object(next_copy)
                    self.merge_object(source, next_copy, depth + 1)
            elif isinstance(value, (dict, list)):
                self.merge_object(source, value, depth + 1)

    # Properties

    def get_class_property(self, uid: UIDLike, propname: str):
        return self.get_class_by_uid(uid).get(propname)

    def get_class_uint64_property(self, uid: UIDLike, propname: str) -> Optional[int]:
        """
        Read an integer property, following it through $objects if it is stored as a UID.

        :return: the value, or None if the property does not exist
        :raises UnexpectedTypeException: the property isn't an integer
        """
        prop = self.get_class_property(uid, propname)
        if prop is None:
            log.debug(f"no such property '{propname}'")
            return None
        if isinstance(prop, UID):
            prop = self.get_object_by_uid(prop)
        if isinstance(prop, bool) or not isinstance(prop, int) or isinstance(prop, UID):
            log.error(f"property '{propname}' is not of type integer.")
            raise UnexpectedTypeException(f"property '{propname}' is not of type integer")
        return prop

    def get_class_int_property(self, uid: UIDLike, propname: str) -> Optional[int]:
        value = self.get_class_uint64_property(uid, propname)
        if value is None:
            return None
        return uint_to_int(value, 32)

    def get_class_string_property(self, uid: UIDLike, propname: str) -> Optional[str]:
        prop = self.get_class_property(uid, propname)
        if prop is None:
            return None
        if not isinstance(prop, UID):
            log.error(f"property '{propname}' is not a uid")
            raise UnexpectedTypeException(f"property '{propname}' is not a uid")
        value = self.get_object_by_uid(prop)
        if not isinstance(value, str):
            log.error(f"property '{propname}' is not a string")
            raise UnexpectedTypeException(f"property '{propname}' is not a string")
        return value

    # Projection

    def to_plist(self):
        """
        Flatten the archive back into a plain plist, starting at the default top object.

        Understands primitives, NS(Mutable)Dictionary and NS(Mutable)Array.

        :raises UnsupportedClassException: some reachable object is of another class
        :raises MalformedArchiveException: inconsistent collections, or nesting past opts.MAX_DEPTH
        """
        return self._parse_node(UID(self.get_class_uid()), 0)

    def _parse_node(self, node, depth: int):
        """
        Project one NS.keys/NS.objects element. UIDs are followed; primitives stored inline (FROM_PLIST integers)
            are taken as they are.
        """
        if depth > opts.MAX_DEPTH:
            log.error(f'object graph is deeper than {opts.MAX_DEPTH} levels; cyclic archive?')
            raise MalformedArchiveException(f'object graph is deeper than {opts.MAX_DEPTH} levels')

        if not isinstance(node, UID):
            if _is_primitive(node):
                return node
            raise UnexpectedTypeException(f'collection element {node!r} is neither a UID nor a primitive')

        uid = node.data
        obj = self.get_object_by_uid(uid)
        if _is_primitive(obj):
            return plist.copy(obj)

        classname = self.get_classname(uid)
        if classname in DICTIONARY_CLASSES:
            keys = self.get_class_property(uid, 'NS.keys') or []
            values = self.get_class_property(uid, 'NS.objects') or []
            if not isinstance(keys, list) or not isinstance(values, list):
                raise MalformedArchiveException(f'{classname} at uid {uid} has non-array NS.keys/NS.objects')
            if len(keys) != len(values):
                log.error('inconsistent number of keys vs. values in dictionary object')
                raise MalformedArchiveException(f'{classname} at uid {uid} has {len(keys)} keys '
                                                f'but {len(values)} values')
            result = {}
            for key_node, value_node in zip(keys, values):
                key = self._parse_node(key_node, depth + 1)
                if not isinstance(key, str):
                    log.error('key node is not of string type.')
                    raise UnexpectedTypeException(f'{classname} at uid {uid} has a non-string key {key!r}')
                result[key] = self._parse_node(value_node, depth + 1)
            return result

        if classname in ARRAY_CLASSES:
            values = self.get_class_property(uid, 'NS.objects') or []
            if not isinstance(values, list):
                raise MalformedArchiveException(f'{classname} at uid {uid} has a non-array NS.objects')
            result = []
            for value_node in values:
                result.append(self._parse_node(value_node, depth + 1))
            return result

        log.error(f"unhandled class type '{classname}'")
        raise UnsupportedClassException(f"unhandled class type '{classname}' at uid {uid}")

    # Output

    def to_bytes(self, fmt=plistlib.FMT_BINARY) -> bytes:
        return plist.dumps(self._root(), fmt=fmt)

    def print(self):
        xml = self.to_bytes(plistlib.FMT_XML).decode('utf-8')
        kglue_print(highlight_xml(xml))
