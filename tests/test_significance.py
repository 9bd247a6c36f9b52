"""Tests for significance scoring and threshold shifts."""

from __future__ import annotations

import pytest

from memory_validation.modules.significance import (
    SignificanceAdjustor,
    threshold_adjustment_for,
)
from memory_validation.schemas import MemoryRecord, SignificanceScore, ThresholdConfig
from memory_validation.utils.logging import LogCategory

from conftest import build_record, critical_record_fields


def moderate_record_fields() -> dict:
    """Fields giving significance between 6 and 8 without urgency."""
    return {
        "emotional_analysis": {
            "mood_score": 0.0,
            "patterns": [{"type": "growth", "significance": 0.6, "confidence": 1.0}],
        },
        "relationship": {
            "type": "family",
            "conflict_level": "medium",
            "interaction_quality": "mixed",
        },
    }


@pytest.fixture
def adjustor() -> SignificanceAdjustor:
    return SignificanceAdjustor()


# =============================================================================
# Threshold Adjustment Table
# =============================================================================

class TestThresholdAdjustmentTable:
    """Tests for the significance -> adjustment table."""

    @pytest.mark.parametrize(
        "significance, expected",
        [
            (0.0, 0.0),
            (3.9, 0.0),
            (4.0, -0.05),
            (5.5, -0.05),
            (6.0, -0.1),
            (7.9, -0.1),
            (8.0, -0.2),
            (10.0, -0.2),
        ],
    )
    def test_ranges(self, significance, expected):
        assert threshold_adjustment_for(significance) == pytest.approx(expected)

    def test_monotone(self):
        """Higher significance never yields a smaller shift."""
        shifts = [abs(threshold_adjustment_for(s / 10)) for s in range(0, 101)]
        assert shifts == sorted(shifts)


# =============================================================================
# Assessment
# =============================================================================

class TestSignificanceAssessment:
    """Tests for SignificanceAdjustor.assess."""

    def test_neutral_record(self, adjustor):
        """Neutral mood, no relationship and no patterns scores zero."""
        score = adjustor.assess(build_record())
        assert score.overall == 0.0
        assert score.threshold_adjustment == 0.0
        assert not score.urgent
        assert score.narrative.startswith("low significance")

    def test_critical_record(self, adjustor):
        """Each sub-factor follows its table."""
        score = adjustor.assess(build_record(**critical_record_fields()))
        assert score.mood_magnitude == pytest.approx(9.0)
        assert score.relationship_impact == pytest.approx(10.0)
        assert score.psychological_markers == pytest.approx(9.55)
        assert score.turning_point_potential == pytest.approx(9.5)
        assert score.overall == pytest.approx(9.4625)
        assert score.threshold_adjustment == pytest.approx(-0.2)
        assert score.urgency == pytest.approx(10.0)
        assert score.urgent
        assert score.narrative.startswith("critical significance (9.5/10)")
        assert "strong mood deviation" in score.narrative
        assert score.narrative.endswith("[urgent]")

    def test_moderate_record(self, adjustor):
        score = adjustor.assess(build_record(**moderate_record_fields()))
        assert score.overall == pytest.approx(6.375)
        assert score.threshold_adjustment == pytest.approx(-0.1)
        assert score.urgency == pytest.approx(4.5)
        assert not score.urgent
        assert score.narrative.startswith("high significance")

    def test_mood_magnitude_symmetric(self, adjustor):
        """Elation and distress of equal size score the same."""
        low = adjustor.assess(build_record(emotional_analysis={"mood_score": 2.0}))
        high = adjustor.assess(build_record(emotional_analysis={"mood_score": 8.0}))
        assert low.mood_magnitude == high.mood_magnitude == pytest.approx(6.0)

    def test_group_conversation_adds_impact(self, adjustor):
        pair = adjustor.assess(build_record(relationship={"type": "friend"}))
        group = adjustor.assess(
            build_record(relationship={"type": "friend", "participant_count": 4})
        )
        assert group.relationship_impact == pytest.approx(pair.relationship_impact + 0.5)

    def test_crisis_keyword_word_boundary(self, adjustor):
        """Crisis words match whole words only."""
        urgent = adjustor.assess(build_record(content="Please HELP me"))
        benign = adjustor.assess(build_record(content="That was helpful"))
        assert urgent.urgency == pytest.approx(5.0)
        assert urgent.urgent
        assert benign.urgency == 0.0

    def test_sub_factors_bounded(self, adjustor):
        score = adjustor.assess(build_record(**critical_record_fields()))
        for value in score.breakdown().values():
            assert 0.0 <= value <= 10.0

    def test_logs_assessment(self, logger):
        adjustor = SignificanceAdjustor(logger=logger)
        adjustor.assess(build_record(record_id="sig-1"))
        entries = logger.filter_by_category(LogCategory.SIGNIFICANCE)
        assert entries[0].record_id == "sig-1"


# =============================================================================
# Threshold Shifts
# =============================================================================

class TestAdjustThresholds:
    """Tests for SignificanceAdjustor.adjust_thresholds."""

    def test_no_shift_returns_same_config(self, adjustor):
        config = ThresholdConfig()
        score = SignificanceScore(overall=1.0)
        assert adjustor.adjust_thresholds(config, score) is config

    def test_critical_shift(self, adjustor):
        config = ThresholdConfig()
        score = SignificanceScore(overall=9.0, threshold_adjustment=-0.2)
        adjusted = adjustor.adjust_thresholds(config, score)
        assert adjusted.auto_approve == pytest.approx(0.95)
        assert adjusted.review_required == pytest.approx(0.30)
        assert adjusted.auto_reject == pytest.approx(0.30)
        assert adjusted.version == config.version

    def test_shared_config_untouched(self, adjustor):
        """The shift applies to a copy only."""
        config = ThresholdConfig()
        adjustor.adjust_thresholds(
            config, SignificanceScore(overall=9.0, threshold_adjustment=-0.2)
        )
        assert config.auto_approve == 0.75
        assert config.auto_reject == 0.50

    def test_approve_band_only_narrows(self, adjustor):
        """Nothing that was not auto-approved becomes auto-approved."""
        config = ThresholdConfig()
        for overall, adjustment in ((4.5, -0.05), (6.5, -0.1), (9.0, -0.2)):
            adjusted = adjustor.adjust_thresholds(
                config, SignificanceScore(overall=overall, threshold_adjustment=adjustment)
            )
            assert adjusted.auto_approve >= config.auto_approve
            assert adjusted.auto_reject <= config.auto_reject

    def test_caps_at_bounds(self, adjustor):
        config = ThresholdConfig(auto_approve=0.9, review_required=0.1, auto_reject=0.1)
        adjusted = adjustor.adjust_thresholds(
            config, SignificanceScore(overall=9.0, threshold_adjustment=-0.2)
        )
        assert adjusted.auto_approve == 1.0
        assert adjusted.auto_reject == 0.0
        assert adjusted.review_required == 0.0


class TestRecordOverride:
    def test_significance_independent_of_confidence(self, adjustor):
        """Significance ignores the confidence sub-scores."""
        weak = build_record(extraction=0.1, coherence=0.1, relationship_score=0.1, context=0.1)
        strong = build_record()
        assert adjustor.assess(weak) == adjustor.assess(strong)

    def test_minimal_record(self, adjustor):
        score = adjustor.assess(MemoryRecord(record_id="bare"))
        assert score.overall == 0.0
