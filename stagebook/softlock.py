"""Soft-lock analysis: static scene-graph checks and runtime heuristics."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set

from .conditions import references
from .content import AddItem, ContentStore, SetFlag
from .errors import SoftlockDetected
from .scene_schema import path
from .state import GameState

logger = logging.getLogger(__name__)

DEFAULT_MAX_SCENE_REVISITS = 3
DEFAULT_MAX_STEPS_WITHOUT_PROGRESS = 15


@dataclass(frozen=True)
class SoftlockFinding:
    kind: str
    scene_id: str
    message: str
    visit_count: Optional[int] = None
    steps_without_progress: Optional[int] = None

    def __str__(self) -> str:
        return f"{path('scenes', self.scene_id)}: {self.message}"


@dataclass(frozen=True)
class SoftlockPolicy:
    enabled: bool = True
    max_scene_revisits: int = DEFAULT_MAX_SCENE_REVISITS
    max_steps_without_progress: int = DEFAULT_MAX_STEPS_WITHOUT_PROGRESS
    exempt_scenes: FrozenSet[str] = field(default_factory=frozenset)
    halt_on_detection: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], base: Optional["SoftlockPolicy"] = None) -> "SoftlockPolicy":
        base = base or cls()
        if not isinstance(data, Mapping):
            return base
        return cls(
            enabled=bool(data.get("enabled", base.enabled)),
            max_scene_revisits=int(data.get("maxSceneRevisits", base.max_scene_revisits)),
            max_steps_without_progress=int(
                data.get("maxStepsWithoutProgress", base.max_steps_without_progress)
            ),
            exempt_scenes=_scene_set(data.get("exemptScenes", base.exempt_scenes)),
            halt_on_detection=bool(data.get("failOnDetection", base.halt_on_detection)),
        )


def _scene_set(value: Any) -> FrozenSet[str]:
    if isinstance(value, str):
        return frozenset([value])
    return frozenset(value or ())


# ---------- Static analysis ----------
def build_graph(content: ContentStore) -> Dict[str, List[str]]:
    graph: Dict[str, List[str]] = {scene_id: [] for scene_id in content.scenes}
    for scene_id, scene in content.scenes.items():
        for choice in scene.choices:
            if choice.next_scene in content.scenes:
                graph[scene_id].append(choice.next_scene)
    return graph


def reachable_from(start: str, graph: Mapping[str, Sequence[str]]) -> Set[str]:
    if start not in graph:
        return set()
    visited: Set[str] = set()
    queue: deque[str] = deque([start])
    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        queue.extend(graph.get(current, ()))
    return visited


def find_cycles(graph: Mapping[str, Sequence[str]]) -> List[List[str]]:
    """Return each back-edge cycle found by depth-first search, as a scene path."""
    cycles: List[List[str]] = []
    done: Set[str] = set()

    for root in graph:
        if root in done:
            continue
        on_stack: List[str] = [root]
        iterators = [iter(graph.get(root, ()))]
        while iterators:
            child = next(iterators[-1], None)
            if child is None:
                iterators.pop()
                done.add(on_stack.pop())
                continue
            if child in on_stack:
                cycles.append(on_stack[on_stack.index(child):] + [child])
            elif child not in done:
                on_stack.append(child)
                iterators.append(iter(graph.get(child, ())))
    return cycles


def analyze_graph(content: ContentStore) -> List[SoftlockFinding]:
    findings: List[SoftlockFinding] = []

    for scene_id, scene in content.scenes.items():
        if scene.is_ending:
            continue
        if not scene.choices:
            findings.append(
                SoftlockFinding("dead_end", scene_id, "scene has no choices and is not an ending.")
            )
            continue
        for index, choice in enumerate(scene.choices):
            if choice.next_scene not in content.scenes:
                findings.append(
                    SoftlockFinding(
                        "missing_target",
                        scene_id,
                        f"choice {index} targets unknown scene '{choice.next_scene}'.",
                    )
                )
        if all(choice.condition is not None for choice in scene.choices):
            findings.append(
                SoftlockFinding("all_choices_gated", scene_id, "all choices are gated by conditions.")
            )

    graph = build_graph(content)
    reached = reachable_from(content.start_scene, graph)
    for scene_id, scene in content.scenes.items():
        if scene_id not in reached and not scene.is_ending:
            findings.append(
                SoftlockFinding(
                    "unreachable",
                    scene_id,
                    f"scene is not reachable from start '{content.start_scene}'.",
                )
            )
    return findings


def ungranted_requirements(content: ContentStore) -> List[SoftlockFinding]:
    """Flags and items that choice conditions require but no effect ever grants."""
    granted: Set[tuple] = set()
    for scene in content.scenes.values():
        effects = list(scene.effects_on_enter)
        for choice in scene.choices:
            effects.extend(choice.effects)
        for effect in effects:
            if isinstance(effect, SetFlag):
                granted.add(("flag", effect.flag))
            elif isinstance(effect, AddItem):
                granted.add(("item", effect.item))

    findings: List[SoftlockFinding] = []
    for scene_id, scene in content.scenes.items():
        for index, choice in enumerate(scene.choices):
            for kind, ref in sorted(references(choice.condition)):
                if kind in ("flag", "item") and (kind, ref) not in granted:
                    findings.append(
                        SoftlockFinding(
                            "ungranted_requirement",
                            scene_id,
                            f"choice {index} checks {kind} '{ref}' which no effect grants.",
                        )
                    )
    return findings


# ---------- Runtime detection ----------
class SoftlockMonitor:
    """Track visits and progress across a playthrough and flag stalls."""

    def __init__(self, policy: Optional[SoftlockPolicy] = None) -> None:
        self.policy = policy or SoftlockPolicy()
        self.reset()

    def reset(self) -> None:
        self.steps = 0
        self.last_progress_step = 0
        self._signature: Optional[tuple] = None
        self._visits_since_progress: Dict[str, int] = {}

    @property
    def steps_without_progress(self) -> int:
        return self.steps - self.last_progress_step

    def observe(
        self, state: GameState, choices: Iterable[Any], *, is_ending: bool = False
    ) -> Optional[SoftlockFinding]:
        """Record one step at ``state.current_scene``; ``choices`` are resolved choice views."""
        if not self.policy.enabled or state.current_scene is None:
            return None
        scene_id = state.current_scene
        signature = state.progress_signature()
        self.steps += 1
        if signature != self._signature:
            self._signature = signature
            self.last_progress_step = self.steps
            self._visits_since_progress = {}
        visits = self._visits_since_progress.get(scene_id, 0) + 1
        self._visits_since_progress[scene_id] = visits

        finding = self._check(scene_id, visits, list(choices), is_ending)
        if finding is not None:
            logger.warning("[Softlock] %s", finding)
            if self.policy.halt_on_detection:
                raise SoftlockDetected([finding])
        return finding

    def _check(
        self, scene_id: str, visits: int, choices: List[Any], is_ending: bool
    ) -> Optional[SoftlockFinding]:
        if is_ending:
            return None
        policy = self.policy
        exempt = scene_id in policy.exempt_scenes
        if not exempt and not any(getattr(choice, "enabled", True) for choice in choices):
            return SoftlockFinding(
                "no_choices", scene_id, "no enabled choices at a non-ending scene.", visit_count=visits
            )
        if not exempt and visits > policy.max_scene_revisits:
            return SoftlockFinding(
                "revisit_threshold",
                scene_id,
                f"visited {visits} times without progress (max {policy.max_scene_revisits}).",
                visit_count=visits,
            )
        stalled = self.steps_without_progress
        if stalled > policy.max_steps_without_progress:
            return SoftlockFinding(
                "progress_threshold",
                scene_id,
                f"{stalled} steps without progress (max {policy.max_steps_without_progress}).",
                steps_without_progress=stalled,
            )
        return None
