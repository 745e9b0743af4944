# tests/test_engagement_scorer.py
import pytest

from factories import event, heartbeats

from proofmeet.core.config import Settings
from proofmeet.schemas.activity import ActivityKind
from proofmeet.schemas.evaluation import EngagementLevel, Recommendation
from proofmeet.services.engagement_scorer import (
    ANALYSIS_ERROR,
    EXCESSIVE_IDLE_EVENTS,
    LOW_FOCUS_TIME,
    NO_AUDIO_VIDEO,
    SUSPECTED_AUTOMATION,
    ZERO_ACTIVITY,
    EngagementConfig,
    EngagementScorer,
)


@pytest.fixture
def scorer() -> EngagementScorer:
    return EngagementScorer()


def test_fully_engaged_session_scores_high(scorer):
    timeline = heartbeats(10, tabFocused=True, audioActive=True, videoActive=True)

    analysis = scorer.analyze(timeline, 10)

    assert analysis.score == 100
    assert analysis.level is EngagementLevel.HIGH
    assert analysis.flags == []
    assert analysis.recommendation is Recommendation.APPROVE
    assert analysis.details.engagement_pattern == "PRESENT_AND_ENGAGED"


def test_silent_session_is_rejected_with_zero_activity(scorer):
    analysis = scorer.analyze([], 60)

    assert analysis.score == 0
    assert analysis.level is EngagementLevel.SUSPICIOUS
    assert ZERO_ACTIVITY in analysis.flags
    assert LOW_FOCUS_TIME in analysis.flags
    assert NO_AUDIO_VIDEO in analysis.flags
    assert analysis.recommendation is Recommendation.REJECT
    assert analysis.details.engagement_pattern == "NO_ACTIVITY"


def test_short_silent_session_does_not_flag_zero_activity(scorer):
    analysis = scorer.analyze([], 5)

    assert ZERO_ACTIVITY not in analysis.flags
    assert analysis.details.consistency_score == 100.0


def test_zero_duration_does_not_divide_by_zero(scorer):
    analysis = scorer.analyze([], 0)

    assert analysis.details.focus_time_percent == 0.0
    assert analysis.details.activity_rate == 0.0
    assert ANALYSIS_ERROR not in analysis.flags


def test_low_focus_forces_reject_even_with_high_score():
    # Focus weighs nothing here, so the score stays high while focus is zero.
    config = EngagementConfig(
        focus_weight=0.0,
        activity_rate_weight=0.4,
        audio_video_weight=0.3,
        consistency_weight=0.3,
    )
    timeline = heartbeats(10, audioActive=True, videoActive=True)

    analysis = EngagementScorer(config).analyze(timeline, 10)

    assert analysis.level is EngagementLevel.HIGH
    assert LOW_FOCUS_TIME in analysis.flags
    assert analysis.recommendation is Recommendation.REJECT


def test_automation_is_flagged(scorer):
    timeline = heartbeats(10, per_minute=6, tabFocused=True)

    analysis = scorer.analyze(timeline, 10)

    assert SUSPECTED_AUTOMATION in analysis.flags
    assert NO_AUDIO_VIDEO in analysis.flags
    assert analysis.details.consistency_score == 60.0
    assert analysis.details.engagement_pattern == "LIKELY_AUTOMATED"


def test_medium_with_too_many_flags_goes_to_review(scorer):
    focused = [event(i * 0.1, ActivityKind.ACTIVE, tabFocused=True) for i in range(10)]
    unfocused = [event(1 + i * 0.1, ActivityKind.ACTIVE) for i in range(50)]
    idle = [event(6 + i * 0.01, ActivityKind.IDLE) for i in range(100)]

    analysis = scorer.analyze(focused + unfocused + idle, 10)

    assert analysis.score == 51
    assert analysis.level is EngagementLevel.MEDIUM
    assert set(analysis.flags) == {
        NO_AUDIO_VIDEO,
        EXCESSIVE_IDLE_EVENTS,
        SUSPECTED_AUTOMATION,
    }
    assert analysis.recommendation is Recommendation.FLAG_FOR_REVIEW


def test_video_on_event_counts_as_video_signal(scorer):
    timeline = heartbeats(10, tabFocused=True) + [event(0, ActivityKind.VIDEO_ON)]

    analysis = scorer.analyze(timeline, 10)

    assert analysis.details.audio_video_score == 50.0
    assert NO_AUDIO_VIDEO not in analysis.flags


def test_weights_are_configurable():
    config = EngagementConfig(
        focus_weight=1.0,
        activity_rate_weight=0.0,
        audio_video_weight=0.0,
        consistency_weight=0.0,
    )
    timeline = heartbeats(10, tabFocused=True)

    analysis = EngagementScorer(config).analyze(timeline, 10)

    assert analysis.score == 100


def test_weights_must_sum_to_one():
    with pytest.raises(ValueError):
        EngagementConfig(focus_weight=0.9)


def test_config_from_settings_uses_weight_fields():
    settings = Settings(
        ENGAGEMENT_FOCUS_WEIGHT=0.25,
        ENGAGEMENT_ACTIVITY_RATE_WEIGHT=0.25,
        ENGAGEMENT_AUDIO_VIDEO_WEIGHT=0.25,
        ENGAGEMENT_CONSISTENCY_WEIGHT=0.25,
    )

    config = EngagementConfig.from_settings(settings)

    assert config.focus_weight == 0.25
    assert config.consistency_weight == 0.25


@pytest.mark.parametrize(
    "timeline, duration",
    [
        (["not-an-event"], 10),
        ([], -5),
        ([], "sixty"),
        (None, 10),
    ],
)
def test_malformed_input_yields_safe_default(scorer, timeline, duration):
    analysis = scorer.analyze(timeline, duration)

    assert analysis.score == 0
    assert analysis.level is EngagementLevel.SUSPICIOUS
    assert analysis.flags == [ANALYSIS_ERROR]
    assert analysis.recommendation is Recommendation.FLAG_FOR_REVIEW
