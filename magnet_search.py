#!/usr/bin/env python3
"""
Search a list of magnet links by keyword and report the largest file in each
matching torrent, resolving metadata from the DHT.

Usage: python3 magnet_search.py --magnets magnets.txt --keywords "ubuntu iso" [--timeout 120] [-v]
"""
import argparse
import logging
import sys
from typing import Callable, List, Optional, TextIO

from keyword_filter import qualifying
from metadata_source import DHTMetadataSource, MetadataSource
from resolution_orchestrator import DEFAULT_TIMEOUT, ResolutionOrchestrator
from result_reporter import format_report, report, sort_reports

logger = logging.getLogger("magnet_search")

EXIT_INPUT_ERROR = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Find the largest file in each magnet link matching all keywords")
    ap.add_argument("--magnets", default="", help="File that contains the list of magnets to search ('-' for stdin)")
    ap.add_argument("--keywords", default="", help="Space-separated keywords that must all appear in a magnet line")
    ap.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT, help="Timeout in seconds to wait for each magnet")
    ap.add_argument("--max-workers", type=int, default=None, help="Resolve at most this many magnets at once (default: all)")
    ap.add_argument("--sort", choices=("none", "size"), default="none", help="Order of the report (default: completion order)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    return ap


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(stream=sys.stderr, format="# %(message)s")
    logging.getLogger().setLevel(logging.INFO if verbose else logging.WARNING)


def read_identifiers(stream: TextIO, keywords: List[str]) -> List[str]:
    return list(qualifying(stream, keywords))


def run(args: argparse.Namespace, source_factory: Callable[[], MetadataSource], out: TextIO) -> int:
    keywords = args.keywords.split()
    try:
        if args.magnets == "-":
            identifiers = read_identifiers(sys.stdin, keywords)
        else:
            with open(args.magnets, encoding="utf-8", errors="replace") as f:
                identifiers = read_identifiers(f, keywords)
    except OSError as e:
        logger.error("Cannot read %s: %s", args.magnets, e)
        return EXIT_INPUT_ERROR

    with ResolutionOrchestrator(source_factory(), timeout=args.timeout, max_workers=args.max_workers) as orch:
        for identifier in identifiers:
            orch.submit(identifier)
        print(f"Found {len(identifiers)} magnets", file=out)

        orch.begin_resolution()
        print("Waiting for all requests to finish...", file=out)
        results = orch.await_all()

    reports = [report(r) for r in results]
    if args.sort == "size":
        reports = sort_reports(reports)
    for r in reports:
        print(format_report(r), file=out)
    return 0


def main(argv: Optional[List[str]] = None, source_factory: Callable[[], MetadataSource] = DHTMetadataSource, out: Optional[TextIO] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    if not args.magnets or not args.keywords.split():
        ap.error("you need to pass both a magnet file and a keyword list")
    if args.timeout <= 0:
        ap.error("--timeout must be positive")
    if args.max_workers is not None and args.max_workers < 1:
        ap.error("--max-workers must be at least 1")

    setup_logging(args.verbose)
    try:
        return run(args, source_factory, out or sys.stdout)
    except KeyboardInterrupt:
        print("\n# Interrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
