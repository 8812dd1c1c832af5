"""
Context Curator — Clean Slate Context.

Builds a token-bounded CuratedContext per turn in two phases:
research (cast a wide net over the transcript) then synthesis (compress
the findings into fixed fields). Contexts are cached by id and must be
purged once consumed, so nothing built for one turn leaks into the next.

Behavioral Contract:
- The cache never holds more than `cache_ceiling` contexts; the oldest is
  evicted first.
- purge_context() with no id empties the cache.
- token_count never exceeds max_tokens unless the context is already
  reduced to its empty skeleton.
"""

import json
import math
import time
from collections import Counter, OrderedDict
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

import structlog
from pydantic import BaseModel

from nengine.errors import NotFoundError
from nengine.models.narrative import (
    ContextChunk,
    ContextCurationParams,
    CuratedContext,
    EmotionalArc,
    Importance,
    Interaction,
    KeyEvent,
    Timeframe,
    TurnRecord,
)
from nengine.narrative.history import PLAYER_ID, NarrativeHistory
from nengine.narrative.scoring import meets_importance

logger = structlog.get_logger(__name__)

TIMEFRAME_TURNS = {
    Timeframe.IMMEDIATE: 3,
    Timeframe.RECENT: 10,
    Timeframe.EXTENDED: 20,
}
INTERACTIONS_PER_ACTOR = 5
KEY_EVENTS_PER_ACTOR = 3
LOCATION_RESULTS = 10
ACTION_RESULTS = 5
HISTORY_ITEMS = 5
IMMEDIATE_TURNS = 3
DEFAULT_MECHANICS = "Standard game rules apply"

# Checked in order; the first listed bucket wins ties.
TONE_BUCKETS = (
    ("tense", ("tense", "dramatic")),
    ("relaxed", ("peaceful", "calm")),
    ("mysterious", ("mysterious", "strange")),
)


class ResearchResults(BaseModel):
    recent_turns: List[TurnRecord] = []
    interactions: List[Interaction] = []
    arcs: Dict[str, EmotionalArc] = {}
    key_events: Dict[str, List[KeyEvent]] = {}
    world_changes: List[ContextChunk] = []
    mechanical_context: List[ContextChunk] = []


def estimate_tokens(fields: dict) -> int:
    """Roughly four characters per token of serialized JSON."""
    return math.ceil(len(json.dumps(fields)) / 4)


def infer_tone(moods: List[str]) -> str:
    counts: Counter = Counter()
    for mood in moods:
        for tone, members in TONE_BUCKETS:
            if mood in members:
                counts[tone] += 1
                break
    if not counts:
        return "neutral"
    best = max(counts.values())
    for tone, _ in TONE_BUCKETS:
        if counts[tone] == best:
            return tone
    return "neutral"


class ContextCurator:
    """Research → synthesize → purge over a NarrativeHistory."""

    def __init__(self, history: NarrativeHistory, cache_ceiling: int = 50):
        self.history = history
        self.cache_ceiling = cache_ceiling
        self._cache: "OrderedDict[str, CuratedContext]" = OrderedDict()

    # --- Research ---

    def research(self, params: ContextCurationParams) -> ResearchResults:
        results = ResearchResults(
            recent_turns=self.history.get_recent_turns(TIMEFRAME_TURNS[params.timeframe]),
        )
        for actor in params.actors:
            found = self.history.find_interactions(PLAYER_ID, actor)
            results.interactions.extend(found[-INTERACTIONS_PER_ACTOR:])
            results.arcs[actor] = self.history.get_emotional_arc(actor)
            results.key_events[actor] = self.history.extract_key_events(
                actor, Importance.MEDIUM
            )[:KEY_EVENTS_PER_ACTOR]

        results.world_changes = self.history.search_transcript(params.location, LOCATION_RESULTS)
        results.mechanical_context = self.history.search_transcript(
            params.current_action, ACTION_RESULTS
        )
        return results

    # --- Synthesis ---

    def _history_lines(
        self,
        research: ResearchResults,
        minimum: Optional[Importance],
    ) -> List[str]:
        scored: List[Tuple[float, int, str]] = []
        for interaction in research.interactions:
            scored.append((
                interaction.importance,
                interaction.turn_number,
                f"Turn {interaction.turn_number}: {interaction.description}",
            ))
        for chunk in research.world_changes:
            scored.append((chunk.relevance, chunk.turn_number, chunk.content))

        if minimum is not None:
            scored = [s for s in scored if meets_importance(s[0], minimum)]
        scored.sort(key=lambda s: s[0], reverse=True)

        lines, seen_turns = [], set()
        for _, turn_number, text in scored:
            if turn_number in seen_turns:
                continue
            seen_turns.add(turn_number)
            lines.append(text)
            if len(lines) == HISTORY_ITEMS:
                break
        return lines

    def synthesize(self, research: ResearchResults, params: ContextCurationParams) -> dict:
        immediate = [
            f"{t.player_action} -> {t.narrative}"
            for t in research.recent_turns[-IMMEDIATE_TURNS:]
        ]
        history = self._history_lines(research, params.importance)

        characters = {}
        for actor, arc in research.arcs.items():
            events = "; ".join(e.event for e in research.key_events.get(actor, []))
            characters[actor] = f"{arc.current_emotion} ({arc.trajectory.value}); Recent: {events}"

        changes = "; ".join(c.content for c in research.world_changes[:2]) or "none"
        mechanics = "; ".join(
            c.content for c in research.mechanical_context if c.importance == Importance.HIGH
        ) or DEFAULT_MECHANICS

        return {
            "immediate_situation": immediate,
            "relevant_history": history,
            "character_states": characters,
            "world_context": f"Location: {params.location}. Recent changes: {changes}",
            "mechanical_requirements": mechanics,
            "narrative_tone": infer_tone([t.mood for t in research.recent_turns]),
        }

    @staticmethod
    def _flatten(fields: dict) -> dict:
        flat = dict(fields)
        flat["immediate_situation"] = "\n".join(fields["immediate_situation"])
        flat["relevant_history"] = "\n".join(fields["relevant_history"])
        return flat

    def _fit(self, fields: dict, max_tokens: int) -> dict:
        """Drop or truncate content until the estimate fits the budget."""
        while estimate_tokens(self._flatten(fields)) > max_tokens and fields["relevant_history"]:
            fields["relevant_history"].pop()
        while estimate_tokens(self._flatten(fields)) > max_tokens and fields["immediate_situation"]:
            fields["immediate_situation"].pop(0)

        flat = self._flatten(fields)
        for key in ("world_context", "mechanical_requirements"):
            excess = (estimate_tokens(flat) - max_tokens) * 4
            if excess <= 0:
                break
            flat[key] = flat[key][: max(0, len(flat[key]) - excess)]
        for actor in list(flat["character_states"]):
            excess = (estimate_tokens(flat) - max_tokens) * 4
            if excess <= 0:
                break
            state = flat["character_states"][actor]
            flat["character_states"] = {
                **flat["character_states"],
                actor: state[: max(0, len(state) - excess)],
            }
        return flat

    # --- Public operations ---

    def build_curated_context(self, params: ContextCurationParams) -> CuratedContext:
        started = int(time.time() * 1000)
        research = self.research(params)
        fields = self._fit(self.synthesize(research, params), params.max_tokens)

        context = CuratedContext(
            context_id=f"context_{uuid4().hex[:12]}",
            timestamp=started,
            token_count=estimate_tokens(fields),
            **fields,
        )
        self._cache[context.context_id] = context
        while len(self._cache) > self.cache_ceiling:
            evicted, _ = self._cache.popitem(last=False)
            logger.info("context_evicted", context_id=evicted)

        logger.info(
            "context_built",
            context_id=context.context_id,
            action=params.current_action,
            tokens=context.token_count,
            max_tokens=params.max_tokens,
        )
        return context

    def get_context(self, context_id: str) -> CuratedContext:
        context = self._cache.get(context_id)
        if context is None:
            raise NotFoundError(f"Context '{context_id}' not found")
        return context

    def cached_ids(self) -> List[str]:
        return list(self._cache)

    def purge_context(self, context_id: Optional[str] = None) -> dict:
        if context_id is not None:
            removed = self._cache.pop(context_id, None) is not None
            return {"success": removed, "purged_count": 1 if removed else 0}

        count = len(self._cache)
        self._cache.clear()
        logger.info("contexts_purged", purged_count=count)
        return {"success": True, "purged_count": count}

    def debug_state(self) -> dict:
        return {"cache_size": len(self._cache), "cache_ceiling": self.cache_ceiling}

    def warnings(self) -> List[str]:
        if len(self._cache) > self.cache_ceiling * 0.9:
            return [f"Context cache approaching limit ({len(self._cache)}/{self.cache_ceiling})"]
        return []
