"""Tests for the Narrative History transcript."""

import asyncio
import json

import pytest

from nengine.errors import PersistenceError, ValidationError
from nengine.models.narrative import (
    Importance,
    InteractionType,
    SummaryFocus,
    TimeRange,
    Trajectory,
    TurnInput,
)
from nengine.narrative.history import NarrativeHistory, TranscriptFlusher
from nengine.narrative.scoring import KeywordScorer, bucket_relevance, classify_trajectory


def _make_turn(
    action: str = "look around",
    narrative: str = "Nothing happens.",
    npcs=None,
    dialogue=None,
    combat: bool = False,
    state_changes=None,
    mood: str = "neutral",
) -> TurnInput:
    return TurnInput(
        player_action=action,
        narrative=narrative,
        npcs_involved=npcs or [],
        dialogue=dialogue,
        mechanical_results={"combat": {"hit": True}} if combat else {},
        state_changes=state_changes or [],
        mood=mood,
    )


def _record_many(history: NarrativeHistory, count: int) -> None:
    for i in range(count):
        history.record_turn(_make_turn(action=f"step {i + 1}"))


class TestRecording:
    def test_turn_numbers_start_at_one(self):
        history = NarrativeHistory()
        first = history.record_turn(_make_turn())
        second = history.record_turn(_make_turn())
        assert (first.turn_number, second.turn_number) == (1, 2)
        assert first.id.startswith("turn_")
        assert first.id != second.id

    def test_ceiling_evicts_oldest(self):
        history = NarrativeHistory(ceiling=5)
        _record_many(history, 8)
        assert [t.turn_number for t in history.turns] == [4, 5, 6, 7, 8]
        assert history.record_turn(_make_turn()).turn_number == 9

    def test_recent_turns(self):
        history = NarrativeHistory()
        _record_many(history, 6)
        assert [t.turn_number for t in history.get_recent_turns(3)] == [4, 5, 6]
        assert history.get_recent_turns(0) == []


class TestPersistence:
    def test_persists_every_nth_turn(self, tmp_path):
        path = tmp_path / "transcript.json"
        history = NarrativeHistory(str(path), persist_every=3)
        _record_many(history, 2)
        assert not path.exists()

        history.record_turn(_make_turn())
        assert len(json.loads(path.read_text())) == 3

    def test_flush_only_when_dirty(self, tmp_path):
        history = NarrativeHistory(str(tmp_path / "transcript.json"))
        assert history.flush() is False
        history.record_turn(_make_turn())
        assert history.flush() is True
        assert history.flush() is False

    def test_load_continues_numbering(self, tmp_path):
        path = str(tmp_path / "transcript.json")
        first = NarrativeHistory(path)
        _record_many(first, 4)
        first.flush()

        second = NarrativeHistory(path)
        assert second.load() == 4
        assert second.record_turn(_make_turn()).turn_number == 5

    def test_missing_file_loads_empty(self, tmp_path):
        assert NarrativeHistory(str(tmp_path / "none.json")).load() == 0

    def test_failed_periodic_write_keeps_turn_for_retry(self, tmp_path, monkeypatch):
        path = tmp_path / "transcript.json"
        history = NarrativeHistory(str(path), persist_every=1)

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("nengine.narrative.history.os.replace", failing_replace)
        record = history.record_turn(_make_turn())
        assert record.turn_number == 1
        assert [t.turn_number for t in history.turns] == [1]
        assert not path.exists()
        assert list(tmp_path.iterdir()) == []

        monkeypatch.undo()
        assert history.flush() is True
        assert [t["turn_number"] for t in json.loads(path.read_text())] == [1]

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "transcript.json"
        path.write_text("[{\"broken\": ")
        with pytest.raises(PersistenceError):
            NarrativeHistory(str(path)).load()


class TestSearch:
    def setup_method(self):
        self.history = NarrativeHistory()
        for i in range(1, 9):
            if i == 2:
                self.history.record_turn(_make_turn("enter the tavern", "Warm light spills out.", ["grimwald"]))
            elif i == 7:
                self.history.record_turn(_make_turn("leave", "The tavern door slams behind you."))
            else:
                self.history.record_turn(_make_turn(f"walk {i}", "The road goes on."))

    def test_only_matching_turns(self):
        chunks = self.history.search_transcript("tavern", 5)
        assert sorted(c.turn_number for c in chunks) == [2, 7]
        assert all(c.relevance == 1.0 for c in chunks)
        assert [c.turn_number for c in chunks] == [2, 7]

    def test_case_insensitive(self):
        assert len(self.history.search_transcript("TAVERN")) == 2

    def test_no_match_is_empty(self):
        assert self.history.search_transcript("dragon") == []
        assert self.history.search_transcript("") == []

    def test_entity_filter(self):
        chunks = self.history.search_transcript("tavern", entity_filter="Grimwald")
        assert [c.turn_number for c in chunks] == [2]

    def test_time_range(self):
        assert self.history.search_transcript("tavern", time_range=TimeRange(start=0, end=1)) == []

    def test_max_results(self):
        assert len(self.history.search_transcript("the", max_results=3)) == 3

    def test_non_positive_max_results(self):
        assert self.history.search_transcript("tavern", max_results=0) == []
        assert self.history.search_transcript("tavern", max_results=-1) == []


class TestInteractionsAndEvents:
    def setup_method(self):
        self.history = NarrativeHistory()
        self.history.record_turn(_make_turn("wave", "Grimwald nods.", ["Grimwald"]))
        self.history.record_turn(_make_turn("talk", "You chat.", ["Grimwald"], dialogue="Ale?"))
        self.history.record_turn(_make_turn("attack Grimwald", "Steel rings out.", ["Grimwald"], combat=True))
        self.history.record_turn(_make_turn("walk", "The road is empty."))
        self.history.record_turn(_make_turn("rest", "Grimwald snores by the fire."))

    def test_interaction_types(self):
        interactions = self.history.find_interactions("player", "Grimwald")
        assert [(i.turn_number, i.type) for i in interactions] == [
            (1, InteractionType.ACTION),
            (2, InteractionType.DIALOGUE),
            (3, InteractionType.COMBAT),
        ]
        assert interactions[2].outcome is not None

    def test_interaction_type_filter(self):
        combat = self.history.find_interactions("player", "Grimwald", InteractionType.COMBAT)
        assert [i.turn_number for i in combat] == [3]

    def test_unknown_entity_is_empty(self):
        assert self.history.find_interactions("player", "Nobody") == []

    def test_key_events_medium_threshold(self):
        events = self.history.extract_key_events("Grimwald", Importance.MEDIUM)
        assert [e.turn_number for e in events] == [3]

    def test_key_events_include_narrative_mentions(self):
        events = self.history.extract_key_events("Grimwald")
        assert sorted(e.turn_number for e in events) == [1, 2, 3, 5]
        assert events[0].turn_number == 3


class TestEmotionalArc:
    def test_rising_arc(self):
        history = NarrativeHistory()
        history.record_turn(_make_turn("greet", "You meet Mira.", ["Mira"]))
        history.record_turn(_make_turn("ask", "She hesitates.", ["Mira"], dialogue="Why?"))
        history.record_turn(_make_turn(
            "accuse", "Mira is furious.", ["Mira"], dialogue="How dare you", combat=True, mood="tense",
        ))

        arc = history.get_emotional_arc("Mira")
        assert [s.intensity for s in arc.sequence] == [0.5, 0.7, 1.0]
        assert arc.trajectory == Trajectory.RISING
        assert arc.current_emotion == "angry"

    def test_unknown_character(self):
        arc = NarrativeHistory().get_emotional_arc("Nobody")
        assert arc.sequence == []
        assert arc.current_emotion == "neutral"
        assert arc.trajectory == Trajectory.STABLE

    def test_chaotic_variance(self):
        assert classify_trajectory([0, 1.5, 0, 1.5, 0]) == Trajectory.CHAOTIC

    def test_falling(self):
        assert classify_trajectory([1.0, 0.8, 0.6, 0.5]) == Trajectory.FALLING

    def test_too_few_samples_are_stable(self):
        assert classify_trajectory([0.1, 0.9]) == Trajectory.STABLE


class TestScoring:
    def test_relevance_is_word_fraction(self):
        assert KeywordScorer().relevance("old tavern", "the tavern is warm") == 0.5

    def test_scores_are_capped_at_one(self):
        record = NarrativeHistory().record_turn(_make_turn(
            "swing", "Steel rings out.", dialogue="Yield!", combat=True,
            state_changes=[{"gate": "open"}], mood="tense",
        ))
        scorer = KeywordScorer()
        assert scorer.importance(record) == 1.0
        assert scorer.intensity(record) == 1.0

    def test_relevance_buckets(self):
        assert bucket_relevance(0.9) == Importance.HIGH
        assert bucket_relevance(0.5) == Importance.MEDIUM
        assert bucket_relevance(0.4) == Importance.LOW


class TestDigests:
    def setup_method(self):
        self.history = NarrativeHistory()
        self.history.record_turn(_make_turn("open door", "The door creaks open.", ["Grimwald"], dialogue="Careful"))
        self.history.record_turn(_make_turn(
            "pull lever", "The gate rises.", state_changes=[{"gate": "open"}], mood="dramatic",
        ))

    def test_general_summary(self):
        summary = self.history.generate_summary(1, 2)
        assert summary.startswith("Summary of turns 1-2:\n\n")
        assert "Turn 1: open door -> The door creaks open...." in summary

    def test_empty_range(self):
        assert self.history.generate_summary(10, 20) == "No turns found in the specified range."

    def test_plot_summary(self):
        summary = self.history.generate_summary(1, 2, SummaryFocus.PLOT)
        assert "pull lever (Turn 2)" in summary
        assert "open door" not in summary

    def test_character_summary(self):
        summary = self.history.generate_summary(1, 2, SummaryFocus.CHARACTER)
        assert 'Grimwald:\n  • The door creaks open. ("Careful")' in summary

    def test_world_summary(self):
        assert '{"gate": "open"}' in self.history.generate_summary(1, 2, SummaryFocus.WORLD)
        assert self.history.generate_summary(1, 1, SummaryFocus.WORLD).endswith(
            "No significant world changes in this period."
        )

    def test_full_transcript_formats(self):
        assert len(json.loads(self.history.get_full_transcript())) == 2
        assert len(json.loads(self.history.get_full_transcript(from_turn=2))) == 1

        text = self.history.get_full_transcript(format="text")
        assert "Action: open door" in text
        assert 'Dialogue: "Careful"' in text
        assert "Mood: dramatic" in text

    def test_unknown_format(self):
        with pytest.raises(ValidationError):
            self.history.get_full_transcript(format="xml")


class TestTranscriptFlusher:
    def test_flushes_until_stopped(self, tmp_path):
        path = tmp_path / "transcript.json"
        history = NarrativeHistory(str(path))
        history.record_turn(_make_turn())
        flusher = TranscriptFlusher(history, interval_seconds=0.01)

        async def run():
            stop = asyncio.Event()
            task = asyncio.create_task(flusher.run_async(stop))
            await asyncio.sleep(0.05)
            assert flusher.running is True
            stop.set()
            await task

        asyncio.run(run())
        assert flusher.running is False
        assert len(json.loads(path.read_text())) == 1

    def test_flush_failure_is_logged_not_raised(self, tmp_path, monkeypatch):
        history = NarrativeHistory(str(tmp_path / "transcript.json"))
        history.record_turn(_make_turn())

        def failing_flush():
            raise PersistenceError("disk full")

        monkeypatch.setattr(history, "flush", failing_flush)
        flusher = TranscriptFlusher(history, interval_seconds=0.01)

        async def run():
            stop = asyncio.Event()
            task = asyncio.create_task(flusher.run_async(stop))
            await asyncio.sleep(0.03)
            stop.set()
            await task

        asyncio.run(run())
        assert flusher.running is False
