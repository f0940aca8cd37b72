import pytest

from stagebook.content import (
    AddItem,
    Choice,
    ContentStore,
    HasItem,
    Scene,
    SetFlag,
    SetStat,
    UnknownEffect,
)
from stagebook.effects import apply_effect
from stagebook.errors import ContentConfigurationError, InvalidChoiceSelection
from stagebook.resolver import SceneResolver
from stagebook.save_manager import load, save
from stagebook.state import StatBounds


def opening_content(**extra_scenes) -> ContentStore:
    scenes = [
        Scene(
            "sc_1_0_001",
            title="The Stage Door",
            choices=(
                Choice("Slip into the wings", "sc_1_0_002", effects=(AddItem("wings_pass"),)),
                Choice(
                    "Climb to the booth",
                    "sc_1_0_003",
                    condition=HasItem("booth_key"),
                    disabled_hint="The booth door is locked.",
                ),
            ),
        ),
        Scene(
            "sc_1_0_002",
            effects_on_enter=(SetFlag("path_direct"),),
            choices=(Choice("Back", "sc_1_0_001"),),
        ),
        Scene("sc_1_0_003", ending="Booth"),
    ]
    scenes.extend(extra_scenes.values())
    return ContentStore.from_scenes(
        scenes,
        "sc_1_0_001",
        stat_bounds={"stage_presence": StatBounds(1, 4, 2)},
        factions=("preservationist",),
    )


def test_end_to_end_opening_scenario() -> None:
    content = opening_content()
    state = content.new_state(current_scene="sc_1_0_001")
    assert state.stats == {"stage_presence": 2}
    assert state.factions == {"preservationist": 0}

    resolver = SceneResolver(content, state)
    resolver.start()
    views = resolver.select_choice(0)

    assert state.inventory == {"wings_pass": 1}
    assert state.current_scene == "sc_1_0_002"
    assert state.scene_history == ["sc_1_0_001", "sc_1_0_002"]
    assert "path_direct" in state.flags
    assert [view.label for view in views] == ["Back"]


def test_choice_gating_reports_hint_until_item_is_held() -> None:
    resolver = SceneResolver(opening_content())
    views = resolver.start()

    enabled = [view for view in views if view.enabled]
    assert len(enabled) == 1
    assert views[1].disabled_hint == "The booth door is locked."
    assert views[0].disabled_hint is None

    apply_effect(AddItem("booth_key"), resolver.state)
    views = resolver.resolve_choices()
    assert all(view.enabled for view in views)


def test_default_hint_describes_the_condition() -> None:
    scene = Scene(
        "sc_gate",
        choices=(Choice("Open", "sc_1_0_003", condition=HasItem("booth_key")),),
    )
    resolver = SceneResolver(opening_content(gate=scene))
    views = resolver.enter_scene("sc_gate")
    assert views[0].disabled_hint == "Requires booth_key"


def test_selecting_disabled_choice_is_rejected_without_mutation() -> None:
    resolver = SceneResolver(opening_content())
    resolver.start()
    before = resolver.state.copy()

    with pytest.raises(InvalidChoiceSelection, match="locked"):
        resolver.select_choice(1)
    with pytest.raises(InvalidChoiceSelection, match="does not exist"):
        resolver.select_choice(9)

    assert resolver.state == before


def test_transition_is_atomic_when_an_effect_is_malformed() -> None:
    broken = Scene(
        "sc_broken",
        effects_on_enter=(SetFlag("half_applied"),),
        choices=(
            Choice(
                "Fall through",
                "sc_1_0_002",
                effects=(SetStat("stage_presence", 4), UnknownEffect("teleport")),
            ),
            Choice("Into the void", "sc_missing"),
        ),
    )
    resolver = SceneResolver(opening_content(broken=broken))
    resolver.enter_scene("sc_broken")
    before = resolver.state.copy()

    with pytest.raises(ContentConfigurationError):
        resolver.select_choice(0)
    assert resolver.state == before

    with pytest.raises(ContentConfigurationError, match="sc_missing"):
        resolver.select_choice(1)
    assert resolver.state == before


def test_one_batched_event_per_scene_entry() -> None:
    resolver = SceneResolver(opening_content())
    events = []
    unsubscribe = resolver.subscribe(events.append)

    resolver.start()
    resolver.select_choice(0)

    assert [event.scene_id for event in events] == ["sc_1_0_001", "sc_1_0_002"]
    assert events[1].choice_index == 0
    assert len(events[1].effects) == 2
    assert events[1].state.inventory == {"wings_pass": 1}
    assert events[1].state is not resolver.state

    unsubscribe()
    resolver.select_choice(0)
    assert len(events) == 2


def test_revisits_accumulate_visit_counts() -> None:
    resolver = SceneResolver(opening_content())
    resolver.start()
    resolver.select_choice(0)
    resolver.select_choice(0)
    resolver.select_choice(0)

    assert resolver.visit_counts() == {"sc_1_0_001": 2, "sc_1_0_002": 2}
    assert resolver.state.inventory == {"wings_pass": 2}


def test_restore_adopts_state_in_place() -> None:
    resolver = SceneResolver(opening_content())
    live = resolver.state
    resolver.start()
    snapshot = live.copy()
    resolver.select_choice(0)

    views = resolver.restore(snapshot)

    assert resolver.state is live
    assert live.current_scene == "sc_1_0_001"
    assert live.inventory == {}
    assert len(views) == 2


def test_ending_scene_reports_no_choices() -> None:
    resolver = SceneResolver(opening_content())
    assert resolver.enter_scene("sc_1_0_003") == []
    assert resolver.is_ending()


def test_zero_quantity_item_effect_never_reaches_a_save() -> None:
    content = ContentStore.from_scenes(
        [
            Scene("lobby", choices=(Choice("Take nothing", "cloakroom"),)),
            Scene("cloakroom", effects_on_enter=(AddItem("ticket", 0),), ending="Coats"),
        ],
        "lobby",
    )
    resolver = SceneResolver(content)
    resolver.start()
    before = resolver.state.copy()

    with pytest.raises(ContentConfigurationError, match="positive quantity"):
        resolver.select_choice(0)
    assert resolver.state == before
    restored = load(save(resolver.state))
    assert restored.current_scene == "lobby"
    assert restored.inventory == {}
