#
#  kglue | kglue
#  log.py
#
#  Level-gated logger used across kglue.
#
#  Levels as the codecs use them:
#       ERROR       malformed OPACK/TLV/archive input, right before the exception is raised
#       WARN        FROM_PLIST children dropped during archive conversion
#       INFO        CLI progress (file sizes, commands)
#       DEBUG       archive loads, lookups that come back empty
#       DEBUG_MORE  class appends, hex previews of codec buffers (debug_bytes)
#       DEBUG_TOO_MUCH  every appended object and UID remap
#
#  Each line carries a kglue.<module>:L#<line>:<Class>:<func>() prefix taken from the caller's frame.
#
#  This file is part of kglue. kglue is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) 0cyn 2022.
#

from enum import Enum
import sys
import inspect
import os


class LogLevel(Enum):
    NONE = -1
    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3
    DEBUG_MORE = 4
    # every UID remap and every decoded OPACK token; pipe this to a file
    DEBUG_TOO_MUCH = 5


def print_err(msg):
    print(msg, file=sys.stderr)


class log:
    """
    Static logger.

    LOG_FUNC receives info/debug lines, LOG_ERR receives warnings and errors. Both can be swapped out
        (tests capture LOG_ERR to assert on error output).
    """

    LOG_LEVEL = LogLevel.ERROR
    # Should be a function name, without ()
    LOG_FUNC = print
    LOG_ERR = print_err

    @staticmethod
    def get_class_from_frame(fr):
        fr: inspect.FrameInfo = fr
        if 'self' in fr.frame.f_locals:
            return type(fr.frame.f_locals["self"]).__name__
        elif 'cls' in fr.frame.f_locals:
            return fr.frame.f_locals['cls'].__name__

        return None

    @staticmethod
    def line():
        stack_frame = inspect.stack()[2]
        filename = os.path.basename(stack_frame[1]).split('.')[0]
        line_name = f'L#{stack_frame[2]}'
        cn = log.get_class_from_frame(stack_frame)
        call_from = cn + ':' if cn is not None else ""
        call_from += stack_frame[3]
        return 'kglue.' + filename + ":" + line_name + ":" + call_from + '()'

    @staticmethod
    def debug(msg=""):
        if log.LOG_LEVEL.value >= LogLevel.DEBUG.value:
            log.LOG_FUNC(f'DEBUG - {log.line()} - {msg}')

    @staticmethod
    def debug_more(msg: str = ""):
        if log.LOG_LEVEL.value >= LogLevel.DEBUG_MORE.value:
            log.LOG_FUNC(f'DEBUG-2 - {log.line()} - {msg}')

    @staticmethod
    def debug_tm(msg: str = ""):
        if log.LOG_LEVEL.value >= LogLevel.DEBUG_TOO_MUCH.value:
            log.LOG_FUNC(f'DEBUG-3 - {log.line()} - {msg}')

    @staticmethod
    def debug_bytes(label: str, data, limit=64):
        """Log a hex preview of `data`, truncated to `limit` bytes."""
        if log.LOG_LEVEL.value >= LogLevel.DEBUG_MORE.value:
            preview = bytes(data[:limit]).hex()
            if len(data) > limit:
                preview += f'... ({len(data)} bytes)'
            log.LOG_FUNC(f'DEBUG-2 - {log.line()} - {label}: {preview}')

    @staticmethod
    def info(msg: str = ""):
        if log.LOG_LEVEL.value >= LogLevel.INFO.value:
            log.LOG_FUNC(f'INFO - {log.line()} - {msg}')

    @staticmethod
    def warn(msg: str = ""):
        if log.LOG_LEVEL.value >= LogLevel.WARN.value:
            log.LOG_ERR(f'WARN - {log.line()} - {msg}')

    warning = warn

    @staticmethod
    def error(msg: str = ""):
        if log.LOG_LEVEL.value >= LogLevel.ERROR.value:
            log.LOG_ERR(f'ERROR - {log.line()} - {msg}')
