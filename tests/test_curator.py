"""Tests for Clean Slate Context curation."""

import pytest

from nengine.errors import NotFoundError
from nengine.models.narrative import ContextCurationParams, Importance, Timeframe, TurnInput
from nengine.narrative.curator import DEFAULT_MECHANICS, ContextCurator, estimate_tokens, infer_tone
from nengine.narrative.history import NarrativeHistory


def _make_params(**overrides) -> ContextCurationParams:
    values = {
        "current_action": "open the chest",
        "actors": ["Grimwald"],
        "location": "tavern",
        "max_tokens": 2000,
    }
    values.update(overrides)
    return ContextCurationParams(**values)


def _make_history(turns: int = 6, narrative: str = "The fire crackles in the tavern.") -> NarrativeHistory:
    history = NarrativeHistory()
    for i in range(1, turns + 1):
        history.record_turn(TurnInput(
            player_action=f"action {i}",
            narrative=f"{narrative} ({i})",
            npcs_involved=["Grimwald"] if i % 2 else [],
            dialogue="Another round?" if i % 3 == 0 else None,
            mood="tense" if i == turns else "neutral",
        ))
    return history


class TestBuild:
    def setup_method(self):
        self.history = _make_history()
        self.curator = ContextCurator(self.history)

    def test_immediate_situation_uses_last_three_turns(self):
        context = self.curator.build_curated_context(_make_params())
        lines = context.immediate_situation.split("\n")
        assert len(lines) == 3
        assert lines[0].startswith("action 4 -> ")
        assert lines[-1].startswith("action 6 -> ")

    def test_fields_populated(self):
        context = self.curator.build_curated_context(_make_params())
        assert context.context_id.startswith("context_")
        assert context.world_context.startswith("Location: tavern. Recent changes: ")
        assert "Grimwald" in context.character_states
        assert context.relevant_history
        assert context.narrative_tone == "tense"
        assert context.token_count <= 2000

    def test_default_mechanics(self):
        context = self.curator.build_curated_context(_make_params())
        assert context.mechanical_requirements == DEFAULT_MECHANICS

    def test_matching_action_adds_mechanics(self):
        context = self.curator.build_curated_context(_make_params(current_action="action 5"))
        assert "Turn 5: action 5" in context.mechanical_requirements

    def test_unknown_location_has_no_changes(self):
        context = self.curator.build_curated_context(_make_params(location="moon", actors=[]))
        assert context.world_context == "Location: moon. Recent changes: none"

    def test_immediate_timeframe(self):
        params = _make_params(timeframe=Timeframe.IMMEDIATE)
        assert self.curator.research(params).recent_turns[0].turn_number == 4

    def test_importance_filter_removes_weak_history(self):
        context = self.curator.build_curated_context(_make_params(
            location="moon", importance=Importance.HIGH,
        ))
        assert context.relevant_history == ""

    def test_empty_history(self):
        curator = ContextCurator(NarrativeHistory())
        context = curator.build_curated_context(_make_params())
        assert context.immediate_situation == ""
        assert context.narrative_tone == "neutral"


class TestTokenBound:
    def test_long_transcript_fits_budget(self):
        history = _make_history(turns=12, narrative="A long winding passage in the tavern " * 20)
        curator = ContextCurator(history)
        context = curator.build_curated_context(_make_params(max_tokens=150))
        fields = context.model_dump(exclude={"context_id", "timestamp", "token_count"})
        assert context.token_count <= 150
        assert estimate_tokens(fields) == context.token_count

    def test_tiny_budget_truncates_world_context(self):
        history = _make_history(turns=3)
        curator = ContextCurator(history)
        context = curator.build_curated_context(_make_params(max_tokens=60))
        assert context.relevant_history == ""
        assert context.token_count <= 60 or context.world_context == ""


class TestCache:
    def setup_method(self):
        self.curator = ContextCurator(_make_history(), cache_ceiling=3)

    def test_ceiling_evicts_oldest(self):
        ids = [self.curator.build_curated_context(_make_params()).context_id for _ in range(5)]
        assert self.curator.cached_ids() == ids[2:]

    def test_purge_one(self):
        context = self.curator.build_curated_context(_make_params())
        assert self.curator.purge_context(context.context_id) == {"success": True, "purged_count": 1}
        with pytest.raises(NotFoundError):
            self.curator.get_context(context.context_id)

    def test_purge_unknown(self):
        assert self.curator.purge_context("context_missing") == {"success": False, "purged_count": 0}

    def test_purge_all(self):
        self.curator.build_curated_context(_make_params())
        self.curator.build_curated_context(_make_params())
        assert self.curator.purge_context()["purged_count"] == 2
        assert self.curator.cached_ids() == []


class TestTone:
    def test_majority_bucket(self):
        assert infer_tone(["calm", "peaceful", "tense"]) == "relaxed"

    def test_tie_prefers_tense(self):
        assert infer_tone(["mysterious", "dramatic"]) == "tense"

    def test_unbucketed_moods_are_neutral(self):
        assert infer_tone(["neutral", "happy"]) == "neutral"
        assert infer_tone([]) == "neutral"
