#!/usr/bin/env python3
"""
Selector Anchors command line

Usage:
    selector-anchors add --file <path> --line <n> --id <id> [--selector <sel>] [--store anchors.json] [--force]
    selector-anchors hash <file> --start <n> [--end <m>]
    selector-anchors match <selector> [--store anchors.json]
    selector-anchors doctor

Examples:
    selector-anchors add --file src/Button.tsx --line 10 --id save-button
    selector-anchors add --file src/Button.tsx --line 10 --id save-button --selector "#save-btn" --force
    selector-anchors hash src/Button.tsx --start 10 --end 12
    selector-anchors match "[data-testid='save']"
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .capture import CaptureError, capture_anchor
from .config import load_budgets
from .hashing.snippet_hash import DEFAULT_HASH_DIGITS, SUPPORTED_ALGORITHMS, hash_fragment
from .health import perform_health_check
from .indexing.source_index import slice_lines
from .matching.anchor_matcher import select_best_anchor
from .store.anchor_store import AnchorStoreError, JsonAnchorStore

# Configure logging
logger = logging.getLogger(__name__)


DEFAULT_STORE = "anchors.json"


def _read_source(path: str) -> str:
    file_path = Path(path)
    if not file_path.is_file():
        raise FileNotFoundError(f"File not found: {file_path.resolve()}")
    return file_path.read_text(encoding="utf-8")


def cmd_add(args) -> int:
    try:
        source_text = _read_source(args.file)
    except (FileNotFoundError, OSError) as e:
        print(f"Error: {e}")
        return 1

    store = JsonAnchorStore(args.store)
    try:
        if store.get_anchor(args.id) is not None and not args.force:
            print(f'Error: Anchor with ID "{args.id}" already exists. Use --force to overwrite.')
            return 1

        anchor = capture_anchor(
            args.id,
            args.selector,
            source_text,
            source_file=args.file,
            line=args.line,
            algorithm=args.algorithm,
            digits=args.digits
        )
        store.put_anchor(anchor)
    except (CaptureError, AnchorStoreError) as e:
        print(f"Error: {e}")
        return 1

    print(f'Saved anchor "{anchor.id}" to {Path(args.store).resolve()}')
    print(f"  Selector     : {anchor.selector}")
    print(f"  Snippet hash : {anchor.snippet_hash}")
    print(f"  Source range : lines {anchor.source_range.start}-{anchor.source_range.end}")
    return 0


def cmd_hash(args) -> int:
    try:
        source_text = _read_source(args.file)
    except (FileNotFoundError, OSError) as e:
        print(f"Error: {e}")
        return 1

    end = args.end if args.end is not None else args.start
    if args.start < 1 or end < args.start:
        print(f"Error: invalid line range {args.start}-{end}")
        return 1

    region, _ = slice_lines(source_text, args.start, end)
    print(hash_fragment(region, algorithm=args.algorithm, digits=args.digits))
    return 0


def cmd_match(args) -> int:
    try:
        anchors = JsonAnchorStore(args.store).list_anchors()
    except AnchorStoreError as e:
        print(f"Error: {e}")
        return 1

    best = select_best_anchor(anchors, args.selector, min_score=args.min_score)
    if best is None:
        print(f"No anchor matches {args.selector!r}")
        return 1

    print(f"{best.anchor.id} (score {best.score:g})")
    for reason in best.reasons:
        print(f"  - {reason}")
    return 0


def cmd_doctor(args) -> int:
    result = perform_health_check()
    budgets = load_budgets()

    print(f"\n{'='*60}")
    print("Selector Anchors Doctor")
    print(f"{'='*60}")
    print(f"  Status  : {'OK' if result.healthy else 'FAILED'}")
    print(f"  Message : {result.message}")
    for issue in result.issues:
        print(f"  Issue   : {issue}")
    print("\n  Budgets (ms):")
    print(f"    fast path     : {budgets.fast_path_ms:g}")
    print(f"    attribute     : {budgets.attribute_ms:g}")
    print(f"    full scan     : {budgets.full_scan_ms:g}")
    print(f"    probe         : {budgets.probe_ms:g}")
    print(f"    source parse  : {budgets.source_parse_ms:g}")
    print(f"    snippet match : {budgets.snippet_match_ms:g}")
    return 0 if result.healthy else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="selector-anchors",
        description="Capture and inspect durable selector anchors",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    hash_options = argparse.ArgumentParser(add_help=False)
    hash_options.add_argument("--algorithm", choices=SUPPORTED_ALGORITHMS, default="sha1")
    hash_options.add_argument("--digits", type=int, default=DEFAULT_HASH_DIGITS,
                              help="Hex digits kept from the digest")

    add = subparsers.add_parser("add", parents=[hash_options],
                                help="Capture an anchor from a source file position")
    add.add_argument("--file", required=True, help="Source file path")
    add.add_argument("--line", required=True, type=int, help="Line number (1-indexed)")
    add.add_argument("--id", required=True, help="Unique identifier for this anchor")
    add.add_argument("--selector", help="Current selector (generated when omitted)")
    add.add_argument("--store", "-o", default=DEFAULT_STORE, help="Anchors file (default: anchors.json)")
    add.add_argument("--force", "-f", action="store_true", help="Overwrite an existing anchor with the same ID")
    add.set_defaults(handler=cmd_add)

    hash_cmd = subparsers.add_parser("hash", parents=[hash_options], help="Hash a line range of a file")
    hash_cmd.add_argument("file")
    hash_cmd.add_argument("--start", required=True, type=int)
    hash_cmd.add_argument("--end", type=int)
    hash_cmd.set_defaults(handler=cmd_hash)

    match = subparsers.add_parser("match", help="Find the stored anchor closest to a selector")
    match.add_argument("selector")
    match.add_argument("--store", default=DEFAULT_STORE)
    match.add_argument("--min-score", type=float, default=0)
    match.set_defaults(handler=cmd_match)

    doctor = subparsers.add_parser("doctor", help="Check dependencies and configuration")
    doctor.set_defaults(handler=cmd_doctor)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    if not getattr(args, "handler", None):
        parser.print_help()
        return 0

    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
