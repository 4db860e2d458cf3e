#!/usr/bin/env python
import argparse
import logging
import sys
from typing import List, Optional

from .dex import Dex
from .errors import FormatError
from .hollow import DEFAULT_OUTPUT_CODE_ITEM, DEFAULT_OUTPUT_DEX, hollow_file
from .utils import setup_logging

log = logging.getLogger(__name__)

EXIT_ERROR = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dexhollow",
        description="Dump the code of a DEX method and replace it with NOPs."
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-v", "--verbose", help="Enable verbose logging", action="store_true"
    )
    common.add_argument(
        "-j", "--json", help="Output log records as JSON objects", action="store_true"
    )

    commands = parser.add_subparsers(dest="command")

    hollow = commands.add_parser(
        "hollow", parents=[common], help="Hollow any DEX and dump code item"
    )
    hollow.add_argument(
        "-i", "--input", help="Path to the DEX file to be processed.", required=True, dest="dex_file"
    )
    hollow.add_argument(
        "--class", help="The full class name to search for (e.g., Lcom/example/MyClass;).",
        required=True, dest="class_name"
    )
    hollow.add_argument(
        "--method", help="The method name to search for (e.g., myMethod).", required=True, dest="method_name"
    )
    hollow.add_argument(
        "--shorty", help="The method shorty descriptor (e.g., \"V\" for a void method with no parameters).",
        required=True
    )
    hollow.add_argument(
        "--output-dex", help="Path to save the modified DEX file.", default=DEFAULT_OUTPUT_DEX
    )
    hollow.add_argument(
        "--output-code-item", help="Path to save the dumped code item.", default=DEFAULT_OUTPUT_CODE_ITEM
    )

    dump = commands.add_parser(
        "dump", parents=[common], help="Print a summary of the DEX header and tables"
    )
    dump.add_argument("dex_file", metavar="DEX_FILE")

    return parser


def print_text(text: str) -> None:
    """Print to stdout, backslash-escaping characters the stream cannot encode, such as unpaired surrogates."""
    encoding = sys.stdout.encoding or "utf-8"
    print(text.encode(encoding, "backslashreplace").decode(encoding))


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose, args.json)

    try:
        if args.command == "hollow":
            return int(hollow_file(args.dex_file, args.class_name, args.method_name, args.shorty,
                                   args.output_dex, args.output_code_item))

        dex = Dex.from_file(args.dex_file)
        log.info("DEX loaded successfully!")
        print_text(dex.summary())
        return 0
    except FormatError as ex:
        log.error(f"Malformed DEX file {args.dex_file}: {ex}")
    except OSError as ex:
        log.error(f"I/O error: {ex}")
    return EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
