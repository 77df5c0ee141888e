# -*- coding:utf-8 -*-
"""
Error categories for oat/image dumping.

- UsageError:       bad, missing or conflicting command line flags
- NotFoundError:    an input file is missing or cannot be opened
- FormatError:      bad magic, checksum or an invalid header/table
- ConsistencyError: the artifact contradicts itself (accounting mismatch,
                    object overrunning its space, method metadata violation).
                    Never handled below the command line entry point.
"""


class DumpError(Exception):
    """Base class for all dump failures"""


class UsageError(DumpError):
    pass


class NotFoundError(DumpError):
    def __init__(self, path, reason=None):
        self.path = path
        self.reason = reason
        message = f"{path} not found"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class FormatError(DumpError):
    pass


class ConsistencyError(DumpError):
    pass


def check(condition, message):
    """Raise ConsistencyError unless condition holds."""
    if not condition:
        raise ConsistencyError(message)
