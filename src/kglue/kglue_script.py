#
#  kglue | kglue
#  kglue_script.py
#
#  Command line entry point.
#
#       kglue opack FILE [--json]       decode an OPACK stream, print it as an XML plist (or JSON)
#       kglue tlv FILE                  list the records of a TLV8 stream
#       kglue archive FILE [--raw]      flatten an NSKeyedArchiver plist (or dump it as-is with --raw)
#       kglue version
#
#  Exits 0 on success, 2 when the input doesn't decode, 1 on usage errors.
#
#  This file is part of kglue. kglue is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) kat 2021.
#

import argparse
import json
import plistlib
import sys
from datetime import datetime
from typing import List, Optional

from kglue import opack, plist, tlv
from kglue.exceptions import MalformedOpackException, MalformedTLVException, MalformedArchiveException, \
    UnexpectedTypeException, UIDOutOfRangeException, UnsupportedClassException
from kglue.log import log, LogLevel
from kglue.nskeyedarchive import NSKeyedArchive
from kglue.util import opts, highlight_xml, highlight_json, kglue_print, version_output

EXIT_USAGE = 1
EXIT_DECODE = 2

DECODE_ERRORS = (MalformedOpackException, MalformedTLVException, MalformedArchiveException, UnexpectedTypeException,
                 UIDOutOfRangeException, UnsupportedClassException)


class KGlueArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        print(f'kglue: error: {message}', file=sys.stderr)
        sys.exit(EXIT_USAGE)


def _build_parser() -> argparse.ArgumentParser:
    parser = KGlueArgumentParser(prog='kglue', description='OPACK / TLV8 / NSKeyedArchiver inspection')
    parser.add_argument('-v', '--verbose', type=int, default=-1, metavar='LEVEL',
                        help='Log level: 0 errors .. 5 everything')
    parser.add_argument('--no-color', dest='no_color', action='store_true', help='Disable syntax highlighting')
    sub = parser.add_subparsers(dest='command')

    opack_p = sub.add_parser('opack', help='Decode an OPACK stream')
    opack_p.add_argument('filename', metavar='FILE')
    opack_p.add_argument('--json', action='store_true', help='Print JSON (bytes as hex) instead of an XML plist')

    tlv_p = sub.add_parser('tlv', help='List the records of a TLV8 stream')
    tlv_p.add_argument('filename', metavar='FILE')

    archive_p = sub.add_parser('archive', help='Flatten an NSKeyedArchiver plist')
    archive_p.add_argument('filename', metavar='FILE')
    archive_p.add_argument('--raw', action='store_true', help='Print the archive itself instead of flattening it')

    sub.add_parser('version', help='Print version and exit')

    return parser


def _json_default(node):
    if isinstance(node, (bytes, bytearray)):
        return node.hex()
    if isinstance(node, datetime):
        return node.isoformat()
    raise TypeError(f'{type(node).__name__} is not JSON serializable')


def _print_xml(tree):
    kglue_print(highlight_xml(plist.dumps(tree, fmt=plistlib.FMT_XML).decode('utf-8')))


def _cmd_opack(args, data: bytes):
    tree = opack.decode(data)
    if tree is None:
        raise MalformedOpackException('Stream holds no values')
    if args.json:
        kglue_print(highlight_json(json.dumps(tree, indent=4, default=_json_default)))
    else:
        _print_xml(tree)


def _cmd_tlv(args, data: bytes):
    for record in tlv.iter_records(data):
        if record.offset + record.length > len(data):
            raise MalformedTLVException(f'record {record.tag:#04x} at offset {record.offset - 2} runs past the end '
                                        f'of the data')
        value = data[record.offset:record.offset + record.length]
        print(f'tag {record.tag:#04x}  len {record.length:<3}  {value.hex()}')


def _cmd_archive(args, data: bytes):
    archive = NSKeyedArchive.new_from_bytes(data)
    if archive is None:
        raise MalformedArchiveException(f'{args.filename} is not a plist')
    if args.raw:
        archive.print()
    else:
        _print_xml(archive.to_plist())


COMMANDS = {
    'opack': _cmd_opack,
    'tlv': _cmd_tlv,
    'archive': _cmd_archive,
}


def main(argv: Optional[List[str]] = None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.verbose != -1:
        log.LOG_LEVEL = LogLevel(max(LogLevel.NONE.value, min(args.verbose, LogLevel.DEBUG_TOO_MUCH.value)))
    if args.no_color:
        opts.DISABLE_COLOR = True

    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_USAGE)

    if args.command == 'version':
        version_output()
        return

    try:
        with open(args.filename, 'rb') as fp:
            data = fp.read()
    except OSError as ex:
        print(f'kglue: {ex}', file=sys.stderr)
        sys.exit(EXIT_USAGE)

    log.info(f'Read {len(data)} bytes from {args.filename}')
    try:
        COMMANDS[args.command](args, data)
    except DECODE_ERRORS as ex:
        print(f'kglue: {args.command}: {ex}', file=sys.stderr)
        sys.exit(EXIT_DECODE)


if __name__ == '__main__':
    main()
