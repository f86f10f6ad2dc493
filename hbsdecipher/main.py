"""
hbsdecipher - Command Line Entry Point

Usage:
    hbsdec [-p PASSWORD] [-r] [-v] [-o OUTDIR] [-i] file1 directory2 ...

Exit codes:
    0 - all files processed
    1 - invalid parameters or missing password
    2 - at least one file failed to decipher
"""

import argparse
import getpass
import logging
import os
import sys
from typing import Iterator, List, Optional

from . import __version__
from .errors import DecipherError
from .files.file_decipher import FileDecipher, get_file_info
from .integration.event_logger import EventLogger


APPLICATION = "hbsdec"
QNAP_BZ2_EXTENSION = ".qnap.bz2"
PLAIN_PREFIX = "plain_"

EXIT_OK = 0
EXIT_PARAMETERS = 1
EXIT_DECIPHER = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APPLICATION,
        description="Decipher files encrypted by QNAP Hybrid Backup Sync."
    )
    parser.add_argument("paths", nargs="*", metavar="file_or_directory")
    parser.add_argument("-p", dest="password", default="",
                        help="password for decryption")
    parser.add_argument("-r", dest="recursive", action="store_true",
                        help="traverse directories recursively")
    parser.add_argument("-v", dest="verbose", action="store_true",
                        help="verbose")
    parser.add_argument("-o", dest="out_directory", default="",
                        help="output directory (optional)")
    parser.add_argument("-i", dest="info", action="store_true",
                        help="show container information instead of deciphering")
    parser.add_argument("--version", action="version",
                        version=f"{APPLICATION} v{__version__}")
    return parser


def read_password() -> str:
    """Prompt for the password without echo."""
    return getpass.getpass("Enter Password: ").strip()


def iter_files(path: str, recursive: bool) -> Iterator[str]:
    """Yield the files to process for a command line argument, sorted by name."""
    if not os.path.isdir(path):
        yield path
        return

    if recursive:
        for root, dirs, files in os.walk(path):
            dirs.sort()
            for name in sorted(files):
                yield os.path.join(root, name)
        return

    for name in sorted(os.listdir(path)):
        full_path = os.path.join(path, name)
        if not os.path.isdir(full_path):
            yield full_path


def plain_file_name(path: str, in_directory: str, out_directory: str = "") -> str:
    """
    Build the output path for a ciphered file.

    With an output directory, the path relative to ``in_directory`` is
    recreated under it; otherwise the output is ``plain_<name>`` beside the
    input. A trailing ".qnap.bz2" is dropped.
    """
    if out_directory:
        relative = os.path.relpath(path, in_directory)
        if relative.startswith(os.pardir):
            relative = os.path.basename(path)
        plain = os.path.normpath(os.path.join(out_directory, relative))
    else:
        plain = os.path.join(os.path.dirname(path), PLAIN_PREFIX + os.path.basename(path))

    if plain.endswith(QNAP_BZ2_EXTENSION):
        plain = plain[:-len(QNAP_BZ2_EXTENSION)]
    return plain


def show_info(paths: List[str], recursive: bool) -> int:
    failures = 0
    for arg in paths:
        try:
            for path in iter_files(arg, recursive):
                info = get_file_info(path)
                compressed = ", compressed" if info['compressed'] else ""
                print(f"{path}: {info['format']}{compressed} ({info['size']} bytes)")
        except OSError as exc:
            print(f"{arg}: {exc}", file=sys.stderr)
            failures += 1
    return EXIT_DECIPHER if failures else EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for hbsdec."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.paths:
        print("need at least one file or directory", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return EXIT_PARAMETERS

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(message)s",
        stream=sys.stderr
    )

    if args.info:
        return show_info(args.paths, args.recursive)

    password = args.password
    if not password:
        try:
            password = read_password()
        except (EOFError, OSError):
            password = ""
        if not password:
            print("\n\nMissing password!!!", file=sys.stderr)
            return EXIT_PARAMETERS

    if args.out_directory:
        logging.getLogger(__name__).info("Start deciphering into %s", args.out_directory)
        try:
            os.makedirs(args.out_directory, exist_ok=True)
        except OSError as exc:
            print(exc, file=sys.stderr)
            return EXIT_PARAMETERS

    events = EventLogger()
    engine = FileDecipher(password, verbose=args.verbose, event_logger=events)
    failures = 0

    for arg in args.paths:
        if not os.path.exists(arg):
            print(f"{arg}: no such file or directory", file=sys.stderr)
            failures += 1
            continue

        in_directory = arg if os.path.isdir(arg) else os.path.dirname(arg)

        for path in iter_files(arg, args.recursive):
            target = plain_file_name(path, in_directory, args.out_directory)
            if args.out_directory:
                try:
                    os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
                except OSError as exc:
                    print(f"{path}: {exc}", file=sys.stderr)
                    failures += 1
                    continue
            try:
                engine.decipher_file(path, target)
            except DecipherError as exc:
                print(f"{path}: {exc}", file=sys.stderr)

    failures += events.summary()['failed']
    return EXIT_DECIPHER if failures else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
