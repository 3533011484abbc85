"""
Content analyzer.

Turns a transcript (or article / raw text) into an episode title,
a summary and a two-host podcast script with one text-generation call.
"""

import logging
import time
from dataclasses import dataclass

from castforge.config import Settings, load_prompt
from castforge.models.schemas import PodcastStyle
from castforge.services.ai_clients.base import MalformedResponse, TextGenerationClient
from castforge.services.pipeline.service_adapter import Candidate, ExternalServiceAdapter
from castforge.utils.json_utils import load_json_payload

logger = logging.getLogger(__name__)
perf_logger = logging.getLogger("castforge.perf")

STYLE_HINTS = {
    PodcastStyle.EDUCATIONAL: "清楚、有條理，像在為聽眾上一堂輕鬆的課",
    PodcastStyle.CASUAL: "輕鬆自然，像兩位朋友在聊天",
    PodcastStyle.PROFESSIONAL: "專業、精準，像產業分析節目",
}


@dataclass
class ContentAnalysis:
    """Title, summary and script produced from one source."""

    title: str
    summary: str
    podcast_script: str


class ContentAnalyzer:
    """
    Summary and script generation through the text-generation adapter.

    Example:
        analyzer = ContentAnalyzer(claude, adapter, settings)
        analysis = await analyzer.analyze(transcript, style=PodcastStyle.CASUAL)
        print(analysis.title)
    """

    def __init__(
        self,
        client: TextGenerationClient,
        adapter: ExternalServiceAdapter,
        settings: Settings,
    ):
        """
        Initialize analyzer.

        Args:
            client: Text generation client
            adapter: Adapter over text-generation model candidates
            settings: Application settings
        """
        self.client = client
        self.adapter = adapter
        self.settings = settings
        self.system_prompt = load_prompt("analysis", "system", settings)
        self.user_template = load_prompt("analysis", "user", settings)

    async def analyze(
        self,
        transcript: str,
        style: PodcastStyle = PodcastStyle.CASUAL,
        source_title: str | None = None,
        task_id: str | None = None,
    ) -> ContentAnalysis:
        """
        Generate title, summary and script.

        Args:
            transcript: Source text
            style: Script tone
            source_title: Title of the source when known
            task_id: Task id for logs

        Returns:
            ContentAnalysis

        Raises:
            CandidatesExhausted: Every model failed or answered unusably
        """
        limit = self.settings.analysis_max_chars
        if len(transcript) > limit:
            logger.info(f"Transcript truncated for analysis: {len(transcript)} -> {limit} chars")
            transcript = transcript[:limit]

        prompt = (
            self.user_template
            .replace("{style}", STYLE_HINTS[style])
            .replace("{source_title}", source_title or "(unknown)")
            .replace("{transcript}", transcript)
        )

        start_time = time.time()

        async def generate(candidate: Candidate) -> ContentAnalysis:
            content, usage = await self.client.generate(
                prompt,
                model=candidate.name,
                system=self.system_prompt,
                max_tokens=candidate.params.get("max_tokens", 4096),
            )
            logger.debug(f"Analysis usage ({candidate.name}): {usage.total_tokens} tokens")
            return self._parse(content, candidate.name)

        analysis = await self.adapter.call(
            generate, context={"task_id": task_id, "stage": "scripting"}
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Analysis complete: title={analysis.title!r}, "
            f"summary={len(analysis.summary)} chars, script={len(analysis.podcast_script)} chars"
        )
        perf_logger.info(f"PERF | analysis | chars={len(transcript)} | time={elapsed:.1f}s")
        return analysis

    @staticmethod
    def _parse(content: str, model: str) -> ContentAnalysis:
        """
        Parse the model's JSON answer.

        Raises:
            MalformedResponse: No usable JSON or required fields missing
        """
        try:
            data = load_json_payload(content, "object")
        except ValueError as e:
            raise MalformedResponse(str(e), provider="claude", model=model, original_error=e) from e

        if not isinstance(data, dict):
            raise MalformedResponse("Analysis is not a JSON object", provider="claude", model=model)

        title = str(data.get("title") or "").strip()
        summary = str(data.get("summary") or "").strip()
        script = str(data.get("podcastScript") or data.get("podcast_script") or "").strip()

        if not summary or not script:
            raise MalformedResponse(
                "Analysis is missing summary or podcastScript", provider="claude", model=model
            )

        return ContentAnalysis(title=title or summary[:30], summary=summary, podcast_script=script)
