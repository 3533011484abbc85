"""
Highlight segmenter.

A text-generation call proposes 2-3 non-overlapping turn ranges of a
finished dialogue; timing is then derived deterministically from
character counts at a fixed narration pace of 0.3 s per character:

    start_time = floor(chars before start turn * 0.3)
    duration   = min(ceil(chars in range * 0.3), 59)
    end_time   = start_time + duration

Arithmetic is done in integers (chars * 3 / 10) so that values like
63 * 0.3 never pick up float error before ceil().
"""

import logging

from castforge.config import Settings, load_prompt
from castforge.models.schemas import (
    MIN_HIGHLIGHT_DURATION,
    DialogueTurn,
    HighlightCandidate,
)
from castforge.services.ai_clients.base import MalformedResponse, TextGenerationClient
from castforge.services.pipeline.service_adapter import Candidate, ExternalServiceAdapter
from castforge.utils.json_utils import load_json_payload

logger = logging.getLogger(__name__)

# One second under the avatar engine's 60s hard cap
MAX_SEGMENT_SECONDS = 59
MAX_CANDIDATES = 3

# Narration pace of 0.3 s per character, as a fraction
_PACE_NUM = 3
_PACE_DEN = 10


def elapsed_seconds(turns: list[DialogueTurn], turn_index: int) -> int:
    """Seconds of narration before turn_index (floored)."""
    chars = sum(len(turn.text) for turn in turns[:turn_index])
    return chars * _PACE_NUM // _PACE_DEN


def raw_duration(chars: int) -> int:
    """Seconds needed to narrate chars characters (ceiled)."""
    return -(-chars * _PACE_NUM // _PACE_DEN)


def build_candidate(
    turns: list[DialogueTurn],
    start_index: int,
    end_index: int,
    title: str,
    description: str,
    rationale: str = "",
) -> HighlightCandidate:
    """
    Derive the timed candidate for an inclusive turn range.

    Args:
        turns: All dialogue turns of the episode
        start_index: First turn of the range
        end_index: Last turn of the range (inclusive)
        title: Highlight title
        description: Highlight description
        rationale: Why the range was chosen

    Returns:
        HighlightCandidate whose end_time - start_time == duration <= 59

    Raises:
        ValueError: If the range is outside the turns
    """
    if not 0 <= start_index <= end_index < len(turns):
        raise ValueError(f"Invalid turn range [{start_index}, {end_index}] for {len(turns)} turns")

    included = turns[start_index:end_index + 1]
    start_time = elapsed_seconds(turns, start_index)
    duration = raw_duration(sum(len(turn.text) for turn in included))

    if duration > MAX_SEGMENT_SECONDS:
        logger.warning(
            f"Highlight [{start_index}, {end_index}] needs {duration}s, "
            f"clamping to {MAX_SEGMENT_SECONDS}s"
        )
        duration = MAX_SEGMENT_SECONDS

    return HighlightCandidate(
        start_turn_index=start_index,
        end_turn_index=end_index,
        title=title,
        description=description,
        rationale=rationale,
        start_time=start_time,
        end_time=start_time + duration,
        duration=duration,
        transcript="\n".join(f"{turn.speaker_name}: {turn.text}" for turn in included),
    )


def build_candidates(turns: list[DialogueTurn], proposals: list[dict]) -> list[HighlightCandidate]:
    """
    Turn model proposals into timed candidates.

    Proposals with invalid ranges, overlapping an earlier kept range, or
    shorter than the engine minimum are dropped.
    """
    candidates: list[HighlightCandidate] = []
    last_end = -1

    for proposal in sorted(proposals, key=lambda p: p["start"]):
        start, end = proposal["start"], proposal["end"]
        if start <= last_end:
            logger.warning(f"Dropping overlapping highlight proposal [{start}, {end}]")
            continue
        try:
            candidate = build_candidate(
                turns, start, end,
                proposal["title"], proposal["description"], proposal["rationale"],
            )
        except ValueError as e:
            logger.warning(f"Dropping highlight proposal: {e}")
            continue
        if candidate.duration < MIN_HIGHLIGHT_DURATION:
            logger.warning(f"Dropping highlight proposal [{start}, {end}]: only {candidate.duration}s")
            continue

        candidates.append(candidate)
        last_end = end
        if len(candidates) == MAX_CANDIDATES:
            break

    return candidates


def parse_proposals(content: str) -> list[dict]:
    """
    Parse the model's proposals.

    Accepts {"segments": [...]} or a bare array; each item is either an
    object (startIndex/endIndex/title/description/reason) or a list
    [startTurnIndex, endTurnIndex, title, description, rationale].

    Raises:
        ValueError: If no usable proposal is present
    """
    data = load_json_payload(content, "auto")
    items = data.get("segments") if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise ValueError("Highlight response has no segment list")

    proposals = []
    for item in items:
        try:
            if isinstance(item, list):
                start, end, title, description, *rest = item
                rationale = rest[0] if rest else ""
            else:
                start = item.get("startIndex", item.get("startTurnIndex"))
                end = item.get("endIndex", item.get("endTurnIndex"))
                title = item.get("title", "")
                description = item.get("description", "")
                rationale = item.get("reason", item.get("rationale", ""))
            proposals.append({
                "start": int(start),
                "end": int(end),
                "title": str(title).strip(),
                "description": str(description).strip(),
                "rationale": str(rationale or "").strip(),
            })
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable highlight proposal {item!r}: {e}")

    if not proposals:
        raise ValueError("Highlight response contains no usable segments")
    return proposals


class HighlightSegmenter:
    """
    Propose bounded-duration highlight candidates from dialogue turns.

    Example:
        segmenter = HighlightSegmenter(claude, adapter, settings)
        candidates = await segmenter.propose(task.artifacts.dialogue_turns)
        for c in candidates:
            print(c.start_time, c.end_time, c.title)
    """

    def __init__(
        self,
        client: TextGenerationClient,
        adapter: ExternalServiceAdapter,
        settings: Settings,
    ):
        self.client = client
        self.adapter = adapter
        self.system_prompt = load_prompt("highlights", "system", settings)
        self.user_template = load_prompt("highlights", "user", settings)

    async def propose(
        self,
        turns: list[DialogueTurn],
        target_duration: int = 60,
        task_id: str | None = None,
    ) -> list[HighlightCandidate]:
        """
        Ask the model for highlight ranges and time them.

        Args:
            turns: Ordered dialogue turns
            target_duration: Target total highlight length in seconds
            task_id: Task id for logs

        Returns:
            Timed candidates in turn order (possibly empty)

        Raises:
            ValueError: If turns is empty
            CandidatesExhausted: Every model failed or answered unusably
        """
        if not turns:
            raise ValueError("Dialogue turns are empty")

        numbered = "\n".join(
            f"[{index}] {turn.speaker_name}: {turn.text}" for index, turn in enumerate(turns)
        )
        prompt = (
            self.user_template
            .replace("{target_duration}", str(target_duration))
            .replace("{max_duration}", str(MAX_SEGMENT_SECONDS))
            .replace("{transcript}", numbered)
        )

        async def generate(candidate: Candidate) -> list[dict]:
            content, _ = await self.client.generate(
                prompt,
                model=candidate.name,
                system=self.system_prompt,
                max_tokens=candidate.params.get("max_tokens", 2048),
            )
            try:
                return parse_proposals(content)
            except ValueError as e:
                raise MalformedResponse(str(e), provider="claude", model=candidate.name) from e

        proposals = await self.adapter.call(
            generate, context={"task_id": task_id, "stage": "highlights"}
        )
        candidates = build_candidates(turns, proposals)
        logger.info(
            f"Highlights for task {task_id}: {len(proposals)} proposed, {len(candidates)} kept"
        )
        return candidates
