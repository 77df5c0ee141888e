#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
oatdump - 转储 OAT 编译产物与 Image 堆快照

Two modes, exactly one per run:
    --oat-file=FILE   dump the structure of a compiled-code archive
    --image=FILE      dump a heap snapshot, its space accounting and the
                      archive it was compiled against

Exit codes: 0 success, 1 dump failure, 2 usage error.
"""

import argparse
import os
import sys

from dump_errors import ConsistencyError, DumpError, FormatError, NotFoundError, UsageError
from image_dumper import ImageDumper
from oat_dumper import OatDumper
from oat_file import OatFile
from runtime import Runtime

# --- Configuration ---
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
# "0" turns off the method metadata assertions of the image dump
DEBUG_CHECKS_ENV = 'OATDUMP_DEBUG_CHECKS'


def debug_checks_enabled(environ=None) -> bool:
    environ = os.environ if environ is None else environ
    return environ.get(DEBUG_CHECKS_ENV, '1').strip() != '0'


def build_parser():
    parser = argparse.ArgumentParser(
        prog='oatdump',
        description="Dump the contents of an oat file or an image file.",
        epilog="Examples:\n"
               "  oatdump --oat-file=/system/framework/boot.oat\n"
               "  oatdump --image=/system/framework/boot.art --host-prefix=$ANDROID_PRODUCT_OUT\n"
               "  oatdump --image=/data/art-cache/app.art --boot-image=/system/framework/boot.art"
               " --output=app.txt",
        formatter_class=argparse.RawTextHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument('--oat-file', metavar='FILE', help="the oat file to be dumped")
    parser.add_argument('--image', metavar='FILE', help="the image file to be dumped")
    parser.add_argument('--boot-image', metavar='FILE',
                        help="the boot image the --image file was compiled against")
    parser.add_argument('--host-prefix', metavar='DIR', default='',
                        help="prefix prepended to every target path in the artifacts")
    parser.add_argument('--output', metavar='FILE', help="write the report here instead of stdout")
    parser.add_argument('-v', '--verbose', action='store_true', help="print progress to stderr")
    return parser


def check_modes(args):
    """Exactly one of --oat-file and --image."""
    if args.oat_file is None and args.image is None:
        raise UsageError("Either --image or --oat-file must be specified")
    if args.oat_file is not None and args.image is not None:
        raise UsageError("Either --image or --oat-file must be specified but not both")


def parse_args(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        check_modes(args)
    except UsageError as e:
        parser.error(str(e))
    return parser, args


def dump_oat(args, out) -> int:
    try:
        oat_file = OatFile.open(args.oat_file)
    except NotFoundError:
        print(f"Failed to open oat file from {args.oat_file}", file=sys.stderr)
        return EXIT_FAILURE
    except FormatError as e:
        print(f"Failed to open oat file from {args.oat_file}: {e}", file=sys.stderr)
        return EXIT_FAILURE
    with oat_file:
        OatDumper(args.host_prefix, verbose=args.verbose).dump(oat_file, out)
    return EXIT_SUCCESS


def dump_image(args, out) -> int:
    try:
        runtime = Runtime.create(args.image, args.boot_image, args.host_prefix, verbose=args.verbose)
    except (NotFoundError, FormatError) as e:
        print(f"Failed to create runtime: {e}", file=sys.stderr)
        return EXIT_FAILURE
    with runtime:
        dumper = ImageDumper(runtime, args.host_prefix, verbose=args.verbose,
                             debug_checks=debug_checks_enabled())
        dumper.dump(out)
    return EXIT_SUCCESS


def main(argv=None) -> int:
    parser, args = parse_args(argv)

    out = sys.stdout
    if args.output:
        try:
            out = open(args.output, 'w', encoding='utf-8')
        except OSError as e:
            parser.error(f"Failed to open output filename {args.output}: {e.strerror}")

    try:
        if args.oat_file is not None:
            return dump_oat(args, out)
        return dump_image(args, out)
    except ConsistencyError as e:
        print(f"Consistency check failed: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except DumpError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        out.flush()
        if out is not sys.stdout:
            out.close()


if __name__ == '__main__':
    sys.exit(main())
