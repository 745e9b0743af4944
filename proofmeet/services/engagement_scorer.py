# proofmeet/services/engagement_scorer.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from proofmeet.core.config import Settings, get_settings
from proofmeet.core.exceptions import AnalysisError
from proofmeet.schemas.activity import ActivityEvent, ActivityKind
from proofmeet.schemas.evaluation import (
    EngagementAnalysis,
    EngagementDetails,
    EngagementLevel,
    Recommendation,
)

logger = logging.getLogger(__name__)


# Flags raised by the scorer.
ZERO_ACTIVITY = "ZERO_ACTIVITY"
LOW_FOCUS_TIME = "LOW_FOCUS_TIME"
EXCESSIVE_IDLE_EVENTS = "EXCESSIVE_IDLE_EVENTS"
SUSPECTED_AUTOMATION = "SUSPECTED_AUTOMATION"
NO_AUDIO_VIDEO = "NO_AUDIO_VIDEO"
ANALYSIS_ERROR = "ANALYSIS_ERROR"

# Any of these forces REJECT regardless of the computed level.
REJECT_OVERRIDE_FLAGS = (ZERO_ACTIVITY, LOW_FOCUS_TIME)


@dataclass(frozen=True)
class EngagementConfig:
    """
    Weights and thresholds for the engagement score.

    Weights are applied to four 0-100 sub-scores and should sum to 1.0.
    """

    focus_weight: float = 0.40
    activity_rate_weight: float = 0.25
    audio_video_weight: float = 0.15
    consistency_weight: float = 0.20

    heartbeat_interval_seconds: int = 30
    baseline_activity_rate: float = 0.5
    automation_activity_rate: float = 5.0
    idle_fraction_threshold: float = 0.6
    zero_activity_min_duration: int = 10
    critical_focus_percent: float = 30.0

    high_threshold: int = 70
    medium_threshold: int = 50
    low_threshold: int = 30
    max_flags_for_medium_approval: int = 2

    def __post_init__(self) -> None:
        total = (
            self.focus_weight
            + self.activity_rate_weight
            + self.audio_video_weight
            + self.consistency_weight
        )
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"Engagement weights must sum to 1.0, got {total:.4f}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngagementConfig":
        return cls(
            focus_weight=settings.ENGAGEMENT_FOCUS_WEIGHT,
            activity_rate_weight=settings.ENGAGEMENT_ACTIVITY_RATE_WEIGHT,
            audio_video_weight=settings.ENGAGEMENT_AUDIO_VIDEO_WEIGHT,
            consistency_weight=settings.ENGAGEMENT_CONSISTENCY_WEIGHT,
        )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class EngagementScorer:
    """
    Pure engagement analysis over a normalized timeline.

    Sub-scores (each 0-100)
    -----------------------
    - focus: focus-tagged entries x heartbeat slice / attended time
    - activity rate: ACTIVE events per minute against the baseline rate
    - audio/video: 50 for any audio signal, 50 for any video signal
    - consistency: 100, -30 when idle events exceed the idle fraction,
      -40 when the rate suggests automation, 0 when a session longer than
      the zero-activity window has no ACTIVE event at all

    Level: >=70 HIGH, >=50 MEDIUM, >=30 LOW, else SUSPICIOUS.
    """

    def __init__(self, config: Optional[EngagementConfig] = None) -> None:
        self.config = config or EngagementConfig()

    def analyze(
        self,
        timeline: Sequence[ActivityEvent],
        total_duration_min: int,
    ) -> EngagementAnalysis:
        """
        Never raises: any failure yields the safe SUSPICIOUS default so the
        compliance decision downstream always receives an analysis.
        """
        try:
            return self._analyze(timeline, total_duration_min)
        except Exception as exc:  # noqa: BLE001
            logger.error("Engagement analysis failed, using safe default: %s", exc, exc_info=True)
            return self.safe_default()

    @staticmethod
    def safe_default() -> EngagementAnalysis:
        return EngagementAnalysis(
            score=0,
            level=EngagementLevel.SUSPICIOUS,
            flags=[ANALYSIS_ERROR],
            recommendation=Recommendation.FLAG_FOR_REVIEW,
            details=EngagementDetails(engagement_pattern="ERROR"),
        )

    def _analyze(
        self,
        timeline: Sequence[ActivityEvent],
        total_duration_min: int,
    ) -> EngagementAnalysis:
        cfg = self.config

        if isinstance(total_duration_min, bool) or not isinstance(total_duration_min, (int, float)):
            raise AnalysisError(f"total_duration_min must be numeric, got {total_duration_min!r}")
        if total_duration_min < 0:
            raise AnalysisError("total_duration_min must not be negative")

        events = list(timeline)
        for event in events:
            if not isinstance(event, ActivityEvent):
                raise AnalysisError(f"Unexpected timeline entry {type(event).__name__}")

        flags: List[str] = []

        active_count = sum(1 for e in events if e.kind is ActivityKind.ACTIVE)
        idle_count = sum(1 for e in events if e.kind is ActivityKind.IDLE)
        focus_count = sum(1 for e in events if e.is_focus_signal)
        audio_seen = any(e.is_audio_signal for e in events)
        video_seen = any(e.is_video_signal for e in events)

        # 1. Focus
        duration_ms = total_duration_min * 60_000
        focus_ms = focus_count * cfg.heartbeat_interval_seconds * 1000
        focus_percent = (focus_ms / duration_ms * 100.0) if duration_ms > 0 else 0.0
        focus_score = min(100.0, focus_percent)
        if focus_percent < cfg.critical_focus_percent:
            flags.append(LOW_FOCUS_TIME)

        # 2. Activity rate
        activity_rate = (active_count / total_duration_min) if total_duration_min > 0 else 0.0
        activity_rate_score = min(100.0, activity_rate / cfg.baseline_activity_rate * 100.0)

        # 3. Audio / video
        audio_video_score = (50.0 if audio_seen else 0.0) + (50.0 if video_seen else 0.0)
        if not audio_seen and not video_seen:
            flags.append(NO_AUDIO_VIDEO)

        # 4. Consistency
        consistency_score = 100.0
        if events and idle_count / len(events) > cfg.idle_fraction_threshold:
            consistency_score -= 30.0
            flags.append(EXCESSIVE_IDLE_EVENTS)
        if activity_rate > cfg.automation_activity_rate:
            consistency_score -= 40.0
            flags.append(SUSPECTED_AUTOMATION)
        if active_count == 0 and total_duration_min > cfg.zero_activity_min_duration:
            consistency_score = 0.0
            flags.append(ZERO_ACTIVITY)
        consistency_score = max(0.0, consistency_score)

        score = _round_half_up(
            focus_score * cfg.focus_weight
            + activity_rate_score * cfg.activity_rate_weight
            + audio_video_score * cfg.audio_video_weight
            + consistency_score * cfg.consistency_weight
        )
        score = max(0, min(100, score))

        level = self._level_for(score)
        recommendation = self._recommendation_for(level, flags)

        return EngagementAnalysis(
            score=score,
            level=level,
            flags=flags,
            recommendation=recommendation,
            details=EngagementDetails(
                focus_time_percent=round(focus_percent, 1),
                activity_rate=round(activity_rate, 2),
                focus_score=round(focus_score, 2),
                activity_rate_score=round(activity_rate_score, 2),
                audio_video_score=audio_video_score,
                consistency_score=consistency_score,
                engagement_pattern=self._pattern_for(active_count, activity_rate, video_seen),
            ),
        )

    def _level_for(self, score: int) -> EngagementLevel:
        cfg = self.config
        if score >= cfg.high_threshold:
            return EngagementLevel.HIGH
        if score >= cfg.medium_threshold:
            return EngagementLevel.MEDIUM
        if score >= cfg.low_threshold:
            return EngagementLevel.LOW
        return EngagementLevel.SUSPICIOUS

    def _recommendation_for(self, level: EngagementLevel, flags: List[str]) -> Recommendation:
        if any(flag in flags for flag in REJECT_OVERRIDE_FLAGS):
            return Recommendation.REJECT
        if level is EngagementLevel.HIGH:
            return Recommendation.APPROVE
        if level is EngagementLevel.MEDIUM:
            if len(flags) > self.config.max_flags_for_medium_approval:
                return Recommendation.FLAG_FOR_REVIEW
            return Recommendation.APPROVE
        if level is EngagementLevel.LOW:
            return Recommendation.FLAG_FOR_REVIEW
        return Recommendation.REJECT

    def _pattern_for(self, active_count: int, activity_rate: float, video_seen: bool) -> str:
        if active_count == 0:
            return "NO_ACTIVITY"
        if activity_rate > self.config.automation_activity_rate:
            return "LIKELY_AUTOMATED"
        if video_seen:
            return "PRESENT_AND_ENGAGED"
        return "ACTIVE_NO_VIDEO"


def get_engagement_scorer() -> EngagementScorer:
    """
    Scorer configured from application settings.
    """
    return EngagementScorer(EngagementConfig.from_settings(get_settings()))
