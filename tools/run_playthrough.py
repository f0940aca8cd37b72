#!/usr/bin/env python3
"""Run scripted playthroughs headlessly and report the results."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONTENT = REPO_ROOT / "content" / "world.json"
DEFAULT_SCRIPTS = REPO_ROOT / "playthroughs"

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from stagebook.content import load_content
from stagebook.errors import ContentConfigurationError
from stagebook.playthrough import PlaythroughResult, PlaythroughRunner, load_script
from stagebook.settings import SETTINGS_PATH, load_settings


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run Stagebook playthrough scripts.")
    parser.add_argument(
        "scripts",
        nargs="*",
        default=[str(DEFAULT_SCRIPTS)],
        help="Playthrough script files or directories containing *.json scripts.",
    )
    parser.add_argument("--content", default=str(DEFAULT_CONTENT), help="Content JSON file.")
    parser.add_argument("--settings", default=str(SETTINGS_PATH), help="Engine settings JSON file.")
    parser.add_argument("--snapshots", default=None, help="Directory to write state snapshots into.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def collect_scripts(targets: Sequence[str]) -> List[Path]:
    scripts: List[Path] = []
    for target in targets:
        path = Path(target)
        if path.is_dir():
            scripts.extend(sorted(path.glob("*.json")))
        else:
            scripts.append(path)
    return scripts


def format_result(result: PlaythroughResult) -> str:
    line = f"[{result.status.upper()}] {result.name} ({result.steps} steps)"
    if result.failure is not None:
        line += f"\n    step {result.failure.step}: {result.failure.reason}"
    elif result.softlock is not None:
        line += f"\n    {result.softlock}"
    return line


def main(argv: Sequence[str]) -> None:
    args = parse_args(argv[1:])
    settings = load_settings(args.settings)
    level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level)
    logging.basicConfig(level=level)

    try:
        content = load_content(args.content, strict=settings.strict_content)
    except ContentConfigurationError as exc:
        print(f"Content failed to load: {exc}")
        sys.exit(1)

    policy = settings.softlock_policy()
    runner = PlaythroughRunner(content, policy=policy, snapshot_dir=args.snapshots)
    scripts = collect_scripts(args.scripts)
    if not scripts:
        print("No playthrough scripts found.")
        sys.exit(1)

    failed = 0
    for script_path in scripts:
        try:
            script = load_script(script_path)
        except (OSError, ValueError) as exc:
            print(f"[ERROR] {script_path}: {exc}")
            failed += 1
            continue
        result = runner.run(script)
        print(format_result(result))
        if not result.passed:
            failed += 1

    print(f"{len(scripts) - failed}/{len(scripts)} playthroughs passed.")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main(sys.argv)
