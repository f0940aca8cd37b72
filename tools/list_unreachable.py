"""List scenes that cannot be reached from the start scene."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONTENT_PATH = REPO_ROOT / "content" / "world.json"

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from stagebook.content import ContentStore, load_content
from stagebook.softlock import build_graph, reachable_from


def unreachable_scenes(content: ContentStore) -> Dict[str, List[str]]:
    """Split unreachable scenes into ordinary scenes and endings."""
    reached = reachable_from(content.start_scene, build_graph(content))
    missing = sorted(set(content.scenes) - reached)
    return {
        "scenes": [scene_id for scene_id in missing if not content.is_ending(scene_id)],
        "endings": [scene_id for scene_id in missing if content.is_ending(scene_id)],
    }


def main(argv: Sequence[str] | None = None) -> None:
    argv = sys.argv if argv is None else argv
    content_path = Path(argv[1]) if len(argv) > 1 else DEFAULT_CONTENT_PATH
    content = load_content(content_path, strict=False)
    report = unreachable_scenes(content)
    reached = len(content.scenes) - len(report["scenes"]) - len(report["endings"])

    print(f"Content file: {content_path}")
    print(f"Total scenes: {len(content.scenes)}")
    print(f"Reachable scenes: {reached}")
    if report["scenes"] or report["endings"]:
        print("Unreachable scenes:")
        for scene_id in report["scenes"]:
            print(f"  - {scene_id}")
        for scene_id in report["endings"]:
            print(f"  - {scene_id} (ending)")
    else:
        print(f"All scenes reachable from '{content.start_scene}'.")


if __name__ == "__main__":
    main()
