import pytest

from stagebook.content import AddItem, Choice, ContentStore, FlagCheck, HasItem, Scene, SetFlag
from stagebook.errors import SoftlockDetected
from stagebook.resolver import SceneResolver
from stagebook.softlock import (
    SoftlockMonitor,
    SoftlockPolicy,
    analyze_graph,
    build_graph,
    find_cycles,
    ungranted_requirements,
)


def loop_content() -> ContentStore:
    return ContentStore.from_scenes(
        [
            Scene("hall", choices=(Choice("Left", "corridor"), Choice("Leave", "exit"))),
            Scene("corridor", choices=(Choice("Back", "hall"),)),
            Scene("exit", ending="Out"),
        ],
        "hall",
    )


def kinds(findings) -> set:
    return {(finding.kind, finding.scene_id) for finding in findings}


def test_static_analysis_flags_dead_ends_and_unreachable_scenes() -> None:
    content = ContentStore.from_scenes(
        [
            Scene("start", choices=(Choice("Go", "stuck"), Choice("Lost", "nowhere"))),
            Scene("stuck"),
            Scene("orphan", choices=(Choice("Back", "start"),)),
            Scene("orphan_ending", ending="Forgotten"),
            Scene("locked", choices=(Choice("Try", "start", condition=FlagCheck("key")),)),
        ],
        "start",
    )

    found = kinds(analyze_graph(content))

    assert ("dead_end", "stuck") in found
    assert ("unreachable", "orphan") in found
    assert ("unreachable", "locked") in found
    assert ("missing_target", "start") in found
    assert ("all_choices_gated", "locked") in found
    assert not any(scene_id == "orphan_ending" for _, scene_id in found)


def test_conditioned_choices_count_as_reachable_edges() -> None:
    content = ContentStore.from_scenes(
        [
            Scene("start", choices=(Choice("Unlock", "vault", condition=FlagCheck("key")),)),
            Scene("vault", ending="Rich"),
        ],
        "start",
    )
    found = kinds(analyze_graph(content))
    assert ("unreachable", "vault") not in found
    assert ("all_choices_gated", "start") in found


def test_cycles_are_reported() -> None:
    cycles = find_cycles(build_graph(loop_content()))
    assert ["hall", "corridor", "hall"] in cycles


def test_runtime_revisit_threshold_without_progress() -> None:
    resolver = SceneResolver(loop_content())
    monitor = SoftlockMonitor(SoftlockPolicy(max_scene_revisits=3))
    findings = []
    resolver.start()
    for _ in range(8):
        finding = monitor.observe(resolver.state, resolver.resolve_choices())
        if finding is not None:
            findings.append(finding)
            break
        resolver.select_choice(0)

    assert findings
    assert findings[0].kind == "revisit_threshold"
    assert findings[0].scene_id == "hall"
    assert findings[0].visit_count == 4


def test_progress_resets_revisit_counts() -> None:
    content = ContentStore.from_scenes(
        [
            Scene("hall", choices=(Choice("Left", "corridor"),)),
            Scene("corridor", effects_on_enter=(AddItem("pebble"),), choices=(Choice("Back", "hall"),)),
        ],
        "hall",
    )
    resolver = SceneResolver(content)
    monitor = SoftlockMonitor(SoftlockPolicy(max_scene_revisits=1, max_steps_without_progress=3))
    resolver.start()
    for _ in range(10):
        assert monitor.observe(resolver.state, resolver.resolve_choices()) is None
        resolver.select_choice(0)


def test_exempt_scenes_and_progress_threshold() -> None:
    policy = SoftlockPolicy(max_scene_revisits=1, max_steps_without_progress=5, exempt_scenes=frozenset({"hall", "corridor"}))
    resolver = SceneResolver(loop_content())
    monitor = SoftlockMonitor(policy)
    resolver.start()
    finding = None
    for _ in range(10):
        finding = monitor.observe(resolver.state, resolver.resolve_choices())
        if finding is not None:
            break
        resolver.select_choice(0)

    assert finding is not None
    assert finding.kind == "progress_threshold"
    assert finding.steps_without_progress == 6


def test_no_enabled_choices_is_reported_and_can_halt() -> None:
    content = ContentStore.from_scenes(
        [Scene("cell", choices=(Choice("Pick lock", "cell", condition=FlagCheck("lockpick")),))],
        "cell",
    )
    resolver = SceneResolver(content)
    resolver.start()

    finding = SoftlockMonitor().observe(resolver.state, resolver.resolve_choices())
    assert finding is not None and finding.kind == "no_choices"

    halting = SoftlockMonitor(SoftlockPolicy(halt_on_detection=True))
    with pytest.raises(SoftlockDetected, match="no enabled choices"):
        halting.observe(resolver.state, resolver.resolve_choices())


def test_endings_and_disabled_policy_are_never_flagged() -> None:
    resolver = SceneResolver(loop_content())
    resolver.enter_scene("exit")
    assert SoftlockMonitor().observe(resolver.state, [], is_ending=True) is None
    assert SoftlockMonitor(SoftlockPolicy(enabled=False)).observe(resolver.state, []) is None


def test_policy_from_script_block() -> None:
    policy = SoftlockPolicy.from_dict(
        {"maxSceneRevisits": 5, "exemptScenes": ["hub"], "failOnDetection": True}
    )
    assert policy.max_scene_revisits == 5
    assert policy.max_steps_without_progress == 15
    assert policy.exempt_scenes == frozenset({"hub"})
    assert policy.halt_on_detection


def test_lone_exempt_scene_string_is_one_scene() -> None:
    policy = SoftlockPolicy.from_dict({"exemptScenes": "hub"})
    assert policy.exempt_scenes == frozenset({"hub"})


def test_ungranted_requirements_list_unobtainable_flags_and_items() -> None:
    content = ContentStore.from_scenes(
        [
            Scene(
                "foyer",
                effects_on_enter=(SetFlag("ticket_checked"),),
                choices=(
                    Choice("Enter the hall", "hall", condition=FlagCheck("ticket_checked")),
                    Choice("Open the vault", "hall", condition=HasItem("vault_key")),
                    Choice("Wander", "hall"),
                ),
            ),
            Scene("hall", ending="Seated"),
        ],
        "foyer",
    )
    findings = ungranted_requirements(content)
    assert [(finding.kind, finding.scene_id) for finding in findings] == [("ungranted_requirement", "foyer")]
    assert "item 'vault_key'" in findings[0].message
    assert str(findings[0]).startswith("scenes.foyer: choice 1")
