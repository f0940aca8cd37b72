#!/usr/bin/env python3
"""Validate gamebook content for common authoring mistakes."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONTENT = REPO_ROOT / "content" / "world.json"

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from stagebook.content import load_content
from stagebook.errors import ContentConfigurationError
from stagebook.softlock import analyze_graph, build_graph, find_cycles, ungranted_requirements


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate Stagebook gamebook content.")
    parser.add_argument(
        "content_path",
        nargs="?",
        default=str(DEFAULT_CONTENT),
        help="Path to the content JSON file.",
    )
    parser.add_argument(
        "--lenient",
        action="store_true",
        help="Accept unknown condition/effect types instead of failing.",
    )
    parser.add_argument(
        "--strict-softlocks",
        action="store_true",
        help="Exit non-zero when soft-lock warnings are reported.",
    )
    parser.add_argument("--cycles", action="store_true", help="Also list scene cycles.")
    parser.add_argument(
        "--references",
        action="store_true",
        help="Also list flags and items that conditions check but no effect grants.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: Sequence[str]) -> None:
    args = parse_args(argv[1:])
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    content_path = Path(args.content_path).resolve()
    try:
        content = load_content(content_path, strict=not args.lenient)
    except ContentConfigurationError as exc:
        print("Validation failed (path: message):")
        for err in exc.errors or (str(exc),):
            print(f" - {err}")
        sys.exit(1)
    except OSError as exc:
        print(f"Failed to read {content_path}: {exc}")
        sys.exit(1)

    findings = analyze_graph(content)
    if findings:
        print("Soft-lock warnings (path: message):")
        for finding in findings:
            print(f" - {finding}")

    if args.cycles:
        cycles = find_cycles(build_graph(content))
        print(f"Cycles found: {len(cycles)}")
        for cycle in cycles:
            print(f" - {' -> '.join(cycle)}")

    if args.references:
        ungranted = ungranted_requirements(content)
        print(f"Ungranted requirements: {len(ungranted)}")
        for finding in ungranted:
            print(f" - {finding}")

    if findings and args.strict_softlocks:
        sys.exit(1)
    print(f"Validation passed for {content_path}.")


if __name__ == "__main__":
    main(sys.argv)
