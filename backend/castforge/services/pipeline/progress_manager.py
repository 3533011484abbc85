"""
Progress calculation for pipeline stages.

Maps (stage, progress within stage) to an overall percent and
estimates the remaining time from expected stage durations in
config/performance.yaml.
"""

import logging

from castforge.config import Settings, get_settings, load_performance_config
from castforge.models.schemas import InputKind, PipelineStage

logger = logging.getLogger(__name__)


class ProgressManager:
    """
    Overall percent and remaining-time estimates for a Task.

    Transcribing (video sources) and analyzing (text and article sources)
    are alternatives occupying the same band.

    Example:
        manager = ProgressManager()
        manager.calculate_overall_progress(PipelineStage.SCRIPTING, 0)    # 40
        manager.calculate_overall_progress(PipelineStage.SYNTHESIZING, 50)  # 70
    """

    # Overall percent at which each stage starts
    STAGE_START = {
        PipelineStage.QUEUED: 0,
        PipelineStage.TRANSCRIBING: 5,
        PipelineStage.ANALYZING: 5,
        PipelineStage.SCRIPTING: 40,
        PipelineStage.SYNTHESIZING: 55,
        PipelineStage.INTRO_OUTRO: 85,
        PipelineStage.ASSEMBLING: 92,
        PipelineStage.COMPLETED: 100,
    }

    # Overall percent at which each stage ends
    STAGE_END = {
        PipelineStage.QUEUED: 5,
        PipelineStage.TRANSCRIBING: 40,
        PipelineStage.ANALYZING: 40,
        PipelineStage.SCRIPTING: 55,
        PipelineStage.SYNTHESIZING: 85,
        PipelineStage.INTRO_OUTRO: 92,
        PipelineStage.ASSEMBLING: 100,
        PipelineStage.COMPLETED: 100,
    }

    # Fallback expected seconds per stage when performance.yaml is silent
    DEFAULT_STAGE_SECONDS = {
        PipelineStage.QUEUED: 1.0,
        PipelineStage.TRANSCRIBING: 120.0,
        PipelineStage.ANALYZING: 10.0,
        PipelineStage.SCRIPTING: 45.0,
        PipelineStage.SYNTHESIZING: 240.0,
        PipelineStage.INTRO_OUTRO: 60.0,
        PipelineStage.ASSEMBLING: 10.0,
    }

    def __init__(self, settings: Settings | None = None, performance: dict | None = None):
        """
        Initialize progress manager.

        Args:
            settings: Application settings (uses defaults if None)
            performance: Preloaded performance config (read from disk if None)
        """
        if performance is None:
            performance = load_performance_config(settings or get_settings())
        self.stage_seconds = dict(self.DEFAULT_STAGE_SECONDS)
        for stage_name, cfg in (performance.get("stages") or {}).items():
            try:
                self.stage_seconds[PipelineStage(stage_name)] = float(cfg.get("base_time"))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Ignoring performance entry for {stage_name}: {e}")

    @staticmethod
    def plan_stages(kind: InputKind, with_intro_outro: bool) -> list[PipelineStage]:
        """
        Ordered stages a Task will pass through.

        Args:
            kind: Source input kind
            with_intro_outro: Whether intro/outro templates were supplied

        Returns:
            Stage list from QUEUED to ASSEMBLING/SYNTHESIZING
        """
        ingest = PipelineStage.TRANSCRIBING if kind is InputKind.VIDEO_URL else PipelineStage.ANALYZING
        stages = [PipelineStage.QUEUED, ingest, PipelineStage.SCRIPTING, PipelineStage.SYNTHESIZING]
        if with_intro_outro:
            stages += [PipelineStage.INTRO_OUTRO, PipelineStage.ASSEMBLING]
        return stages

    def calculate_overall_progress(
        self,
        current_stage: PipelineStage,
        stage_progress: float = 0,
    ) -> float:
        """
        Calculate overall progress percentage.

        Args:
            current_stage: Current pipeline stage
            stage_progress: Progress within current stage (0-100)

        Returns:
            Overall progress (0-100)
        """
        start = self.STAGE_START.get(current_stage, 0)
        end = self.STAGE_END.get(current_stage, start)
        stage_progress = min(max(stage_progress, 0), 100)
        return round(start + (end - start) * stage_progress / 100, 1)

    def estimate_remaining(
        self,
        current_stage: PipelineStage,
        stage_progress: float,
        plan: list[PipelineStage],
    ) -> float | None:
        """
        Estimate seconds until the Task completes.

        Args:
            current_stage: Current pipeline stage
            stage_progress: Progress within current stage (0-100)
            plan: Stage list from plan_stages()

        Returns:
            Seconds remaining, or None when the stage is not part of the plan
        """
        if current_stage is PipelineStage.COMPLETED:
            return 0.0
        if current_stage not in plan:
            return None

        index = plan.index(current_stage)
        current = self.stage_seconds.get(current_stage, 0.0) * (1 - min(max(stage_progress, 0), 100) / 100)
        later = sum(self.stage_seconds.get(stage, 0.0) for stage in plan[index + 1:])
        return round(current + later, 1)

