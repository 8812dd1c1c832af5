"""
Narrative History — the append-only play transcript.

Behavioral Contract:
- Turn numbers are 1-based, strictly increasing and never reused, even
  after the oldest records are evicted.
- The transcript is bounded; the oldest records are evicted (and the
  eviction logged) once the ceiling is exceeded.
- The transcript is written to disk every Nth turn and on flush(), not on
  every turn.
- A failed periodic write leaves the turn recorded and the transcript
  dirty, so the next flush() retries it.
- Empty searches and unknown characters yield empty results, not errors.
"""

import asyncio
import json
import os
import time
from pathlib import Path
from typing import Dict, List, Optional
from uuid import uuid4

import pydantic
import structlog

from nengine.errors import PersistenceError, ValidationError
from nengine.models.narrative import (
    ContextChunk,
    EmotionalArc,
    EmotionSample,
    Importance,
    Interaction,
    InteractionType,
    KeyEvent,
    SummaryFocus,
    TimeRange,
    TurnInput,
    TurnRecord,
)
from nengine.narrative.scoring import (
    KeywordScorer,
    TurnScorer,
    bucket_relevance,
    classify_trajectory,
    meets_importance,
)

logger = structlog.get_logger(__name__)

# Every turn is a player action, so the player takes part in all of them.
PLAYER_ID = "player"

_TRANSCRIPT_LIST = pydantic.TypeAdapter(List[TurnRecord])


def _mentions(turn: TurnRecord, name: str, include_narrative: bool = False) -> bool:
    needle = name.lower()
    if any(needle in npc.lower() for npc in turn.npcs_involved):
        return True
    if needle in turn.player_action.lower():
        return True
    return include_narrative and needle in turn.narrative.lower()


def _involves(turn: TurnRecord, name: str) -> bool:
    return name.lower() == PLAYER_ID or _mentions(turn, name)


def _dump_change(change) -> str:
    return json.dumps(change, sort_keys=True) if not isinstance(change, str) else change


class NarrativeHistory:
    """Records turns and answers retrieval queries over them."""

    def __init__(
        self,
        transcript_path: Optional[str] = None,
        ceiling: int = 1000,
        persist_every: int = 10,
        scorer: Optional[TurnScorer] = None,
    ):
        self.transcript_path = Path(transcript_path) if transcript_path else None
        self.ceiling = ceiling
        self.persist_every = persist_every
        self.scorer: TurnScorer = scorer or KeywordScorer()
        self._transcript: List[TurnRecord] = []
        self._last_turn_number = 0
        self._dirty = False

    # --- Persistence ---

    def load(self) -> int:
        """Load the transcript from disk. Returns the number of turns loaded."""
        if self.transcript_path is None or not self.transcript_path.exists():
            return 0
        try:
            raw = self.transcript_path.read_bytes()
            turns = _TRANSCRIPT_LIST.validate_json(raw)
        except OSError as e:
            raise PersistenceError(f"Cannot read transcript {self.transcript_path}: {e}") from e
        except pydantic.ValidationError as e:
            raise PersistenceError(f"Corrupt transcript {self.transcript_path}") from e

        self._transcript = turns[-self.ceiling:]
        self._last_turn_number = turns[-1].turn_number if turns else 0
        self._dirty = False
        logger.info("transcript_loaded", turns=len(self._transcript), latest_turn=self._last_turn_number)
        return len(self._transcript)

    def persist(self) -> None:
        if self.transcript_path is None:
            return
        tmp = self.transcript_path.with_name(self.transcript_path.name + ".tmp")
        try:
            self.transcript_path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(_TRANSCRIPT_LIST.dump_json(self._transcript, indent=2))
            os.replace(tmp, self.transcript_path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise PersistenceError(f"Cannot write transcript {self.transcript_path}: {e}") from e
        self._dirty = False
        logger.info("transcript_persisted", turns=len(self._transcript), path=str(self.transcript_path))

    def flush(self) -> bool:
        """Persist if anything changed since the last write."""
        if not self._dirty:
            return False
        self.persist()
        return True

    # --- Recording ---

    def record_turn(self, turn: TurnInput) -> TurnRecord:
        self._last_turn_number += 1
        record = TurnRecord(
            id=f"turn_{uuid4().hex[:12]}",
            timestamp=int(time.time() * 1000),
            turn_number=self._last_turn_number,
            **turn.model_dump(),
        )
        self._transcript.append(record)
        self._dirty = True

        overflow = len(self._transcript) - self.ceiling
        if overflow > 0:
            del self._transcript[:overflow]
            logger.info(
                "transcript_evicted",
                evicted=overflow,
                oldest_retained=self._transcript[0].turn_number,
            )

        logger.debug("turn_recorded", turn=record.turn_number, action=record.player_action)

        if record.turn_number % self.persist_every == 0:
            try:
                self.persist()
            except PersistenceError as e:
                logger.error("transcript_persist_deferred", turn=record.turn_number, error=str(e))
        return record

    @property
    def turns(self) -> List[TurnRecord]:
        return list(self._transcript)

    @property
    def latest_turn_number(self) -> int:
        return self._last_turn_number

    def get_recent_turns(self, count: int) -> List[TurnRecord]:
        if count <= 0:
            return []
        return self._transcript[-count:]

    # --- Retrieval ---

    def search_transcript(
        self,
        query: str,
        max_results: int = 10,
        entity_filter: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
    ) -> List[ContextChunk]:
        """
        Linear scan. A turn matches when its narrative, dialogue and action
        text contains the whole query (case-insensitive). Ordered by
        relevance, ties keep transcript order.
        """
        needle = query.lower().strip()
        if not needle or max_results <= 0:
            return []
        entity = entity_filter.lower() if entity_filter else None

        chunks = []
        for turn in self._transcript:
            if time_range and not (time_range.start <= turn.timestamp <= time_range.end):
                continue
            if entity and not any(entity in npc.lower() for npc in turn.npcs_involved):
                continue

            text = f"{turn.narrative} {turn.dialogue or ''} {turn.player_action}".lower()
            if needle not in text:
                continue

            relevance = self.scorer.relevance(needle, text)
            content = f"Turn {turn.turn_number}: {turn.player_action}\nNarrative: {turn.narrative}"
            if turn.dialogue:
                content += f'\nDialogue: "{turn.dialogue}"'
            chunks.append(ContextChunk(
                content=content,
                relevance=relevance,
                timestamp=turn.timestamp,
                turn_number=turn.turn_number,
                entities=list(turn.npcs_involved),
                importance=bucket_relevance(relevance),
            ))

        chunks.sort(key=lambda c: c.relevance, reverse=True)
        return chunks[:max_results]

    def find_interactions(
        self,
        entity1: str,
        entity2: str,
        interaction_type: Optional[InteractionType] = None,
    ) -> List[Interaction]:
        interactions = []
        for turn in self._transcript:
            if not (_involves(turn, entity1) and _involves(turn, entity2)):
                continue

            if turn.dialogue:
                kind = InteractionType.DIALOGUE
            elif turn.has_combat:
                kind = InteractionType.COMBAT
            else:
                kind = InteractionType.ACTION
            if interaction_type and kind != interaction_type:
                continue

            interactions.append(Interaction(
                timestamp=turn.timestamp,
                turn_number=turn.turn_number,
                entity1=entity1,
                entity2=entity2,
                type=kind,
                description=turn.narrative,
                outcome=json.dumps(turn.mechanical_results, sort_keys=True) if turn.mechanical_results else None,
                importance=self.scorer.importance(turn),
            ))
        return interactions

    def extract_key_events(
        self,
        character: str,
        minimum_importance: Optional[Importance] = None,
    ) -> List[KeyEvent]:
        events = []
        for turn in self._transcript:
            if not _mentions(turn, character, include_narrative=True):
                continue
            score = self.scorer.importance(turn)
            if minimum_importance and not meets_importance(score, minimum_importance):
                continue
            events.append(KeyEvent(
                timestamp=turn.timestamp,
                turn_number=turn.turn_number,
                character=character,
                event=turn.narrative,
                importance=score,
                consequences=[_dump_change(c) for c in turn.state_changes],
            ))

        events.sort(key=lambda e: e.importance, reverse=True)
        return events

    def get_emotional_arc(self, character: str) -> EmotionalArc:
        samples = [
            EmotionSample(
                timestamp=turn.timestamp,
                turn_number=turn.turn_number,
                emotion=self.scorer.emotion(turn),
                intensity=self.scorer.intensity(turn),
                trigger=turn.player_action,
            )
            for turn in self._transcript
            if _mentions(turn, character)
        ]
        return EmotionalArc(
            character=character,
            sequence=samples,
            current_emotion=samples[-1].emotion if samples else "neutral",
            trajectory=classify_trajectory([s.intensity for s in samples]),
        )

    # --- Digests ---

    def generate_summary(
        self,
        from_turn: int,
        to_turn: int,
        focus: SummaryFocus = SummaryFocus.GENERAL,
    ) -> str:
        turns = [t for t in self._transcript if from_turn <= t.turn_number <= to_turn]
        if not turns:
            return "No turns found in the specified range."

        header = f"Summary of turns {from_turn}-{to_turn}:\n\n"
        if focus == SummaryFocus.PLOT:
            body = "\n".join(
                f"• {t.player_action} (Turn {t.turn_number}): {t.narrative}"
                for t in turns
                if t.has_combat or t.state_changes or t.mood == "dramatic"
            )
        elif focus == SummaryFocus.CHARACTER:
            by_npc: Dict[str, List[str]] = {}
            for t in turns:
                line = t.narrative + (f' ("{t.dialogue}")' if t.dialogue else "")
                for npc in t.npcs_involved:
                    by_npc.setdefault(npc, []).append(line)
            body = "\n\n".join(
                f"{npc}:\n" + "\n".join(f"  • {line}" for line in lines)
                for npc, lines in by_npc.items()
            )
        elif focus == SummaryFocus.WORLD:
            body = "\n".join(
                f"• Turn {t.turn_number}: " + ", ".join(_dump_change(c) for c in t.state_changes)
                for t in turns
                if t.state_changes
            ) or "No significant world changes in this period."
        else:
            body = "\n".join(
                f"Turn {t.turn_number}: {t.player_action} -> {t.narrative[:100]}..."
                for t in turns
            )
        return header + body

    def get_full_transcript(self, from_turn: Optional[int] = None, format: str = "json") -> str:
        turns = [t for t in self._transcript if from_turn is None or t.turn_number >= from_turn]
        if format == "json":
            return _TRANSCRIPT_LIST.dump_json(turns, indent=2).decode("utf-8")
        if format != "text":
            raise ValidationError(f"Unknown transcript format '{format}'")

        blocks = []
        for t in turns:
            lines = [
                f"Turn {t.turn_number} ({time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(t.timestamp / 1000))}):",
                f"Action: {t.player_action}",
                f"Narrative: {t.narrative}",
            ]
            if t.dialogue:
                lines.append(f'Dialogue: "{t.dialogue}"')
            lines.append(f"Mood: {t.mood}")
            lines.append(f"NPCs: {', '.join(t.npcs_involved)}")
            blocks.append("\n".join(lines) + "\n\n")
        return "".join(blocks)

    # --- Diagnostics ---

    def debug_state(self) -> dict:
        return {
            "transcript_length": len(self._transcript),
            "latest_turn": self._last_turn_number,
            "unsaved_changes": self._dirty,
        }

    def warnings(self) -> List[str]:
        warnings = []
        if not self._transcript:
            warnings.append("No narrative history recorded")
        if len(self._transcript) > self.ceiling * 0.9:
            warnings.append(f"Transcript approaching size limit ({len(self._transcript)}/{self.ceiling})")
        return warnings


class TranscriptFlusher:
    """
    Periodic transcript flush on the event loop.

    Shares the loop with the tool handlers, so a flush never interleaves
    with an in-flight record_turn() or save_state().
    """

    def __init__(self, history: NarrativeHistory, interval_seconds: float = 30):
        self.history = history
        self.interval_seconds = interval_seconds
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
                try:
                    self.history.flush()
                except PersistenceError as e:
                    logger.error("transcript_flush_failed", error=str(e))
        finally:
            self._running = False
