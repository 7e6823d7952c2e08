"""
Tests for the risk scoring engine.

Tests cover:
- Level thresholds and score bounds
- Formula contributions and caps
- Time-to-report pairing
- Append-only score history
"""

from collections import namedtuple
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from exceptions import NotFoundError, ValidationError
from models import db, RiskScore, User
from risk_engine import (
    average_minutes_to_report,
    calculate_risk,
    compute_score,
    get_current_score,
    get_score_history,
    risk_level,
)

FakeEvent = namedtuple("FakeEvent", "event_type campaign_id timestamp")
T0 = datetime(2026, 3, 1, 9, 0, 0)


# ============================================================================
# PURE FUNCTIONS
# ============================================================================


class TestRiskLevel:

    @pytest.mark.parametrize("score,level", [
        (0, "low"), (29, "low"),
        (30, "medium"), (54, "medium"),
        (55, "high"), (74, "high"),
        (75, "critical"), (100, "critical"),
    ])
    def test_thresholds(self, score, level):
        assert risk_level(score) == level


class TestComputeScore:

    def test_baseline_with_everything_complete(self):
        # 50 - 20 for full completion
        assert compute_score(0, 0, 0, 100, 1) == 30

    def test_clicks_are_capped(self):
        assert compute_score(3, 0, 1, 100, 0) == compute_score(10, 0, 1, 100, 0)
        assert compute_score(1, 0, 1, 100, 0) == 50 + 15 - 8

    def test_submissions_are_capped(self):
        assert compute_score(0, 2, 1, 100, 0) == 50 + 40 - 8
        assert compute_score(0, 5, 1, 100, 0) == 50 + 40 - 8

    def test_no_report_penalty_needs_exposure(self):
        assert compute_score(0, 0, 0, 100, 0) == 50
        assert compute_score(0, 1, 0, 100, 0) == 50 + 20 + 10

    def test_training_gap_penalties(self):
        assert compute_score(0, 0, 0, 40, 2) == 65
        assert compute_score(0, 0, 0, 50, 2) == 55
        assert compute_score(0, 0, 0, 80, 5) == 40

    def test_report_reward_is_capped(self):
        assert compute_score(0, 0, 3, 100, 0) == 50 - 24
        assert compute_score(0, 0, 9, 100, 0) == 50 - 24

    def test_fast_reporting_bonus(self):
        assert compute_score(0, 0, 1, 100, 0, minutes_to_report=4.9) == 50 - 8 - 5
        assert compute_score(0, 0, 1, 100, 0, minutes_to_report=5) == 50 - 8
        assert compute_score(0, 0, 1, 100, 0, minutes_to_report=None) == 50 - 8

    def test_clamped_to_100(self):
        assert compute_score(4, 0, 0, 100, 0) == 100
        assert compute_score(5, 5, 0, 0, 3) == 100

    def test_always_within_bounds(self):
        for clicks in range(0, 6):
            for submissions in range(0, 4):
                for reports in range(0, 5):
                    for completion in (0, 49, 50, 79, 80, 100):
                        for minutes in (None, 1, 30):
                            score = compute_score(clicks, submissions, reports, completion, 2, minutes)
                            assert 0 <= score <= 100


class TestAverageMinutesToReport:

    def test_no_pairs(self):
        events = [FakeEvent("sent", 1, T0), FakeEvent("clicked", 1, T0)]
        assert average_minutes_to_report(events) is None

    def test_pairs_earliest_report_in_same_campaign(self):
        events = [
            FakeEvent("sent", 1, T0),
            FakeEvent("reported", 1, T0 + timedelta(minutes=10)),
            FakeEvent("reported", 1, T0 + timedelta(minutes=4)),
            FakeEvent("reported", 2, T0 + timedelta(minutes=1)),
        ]
        assert average_minutes_to_report(events) == pytest.approx(4)

    def test_ignores_reports_before_send(self):
        events = [
            FakeEvent("reported", 1, T0 - timedelta(minutes=5)),
            FakeEvent("sent", 1, T0),
        ]
        assert average_minutes_to_report(events) is None

    def test_averages_across_campaigns(self):
        events = [
            FakeEvent("sent", 1, T0),
            FakeEvent("reported", 1, T0 + timedelta(minutes=2)),
            FakeEvent("sent", 2, T0),
            FakeEvent("reported", 2, T0 + timedelta(minutes=6)),
        ]
        assert average_minutes_to_report(events) == pytest.approx(4)


# ============================================================================
# PERSISTED CALCULATIONS
# ============================================================================


class TestCalculateRisk:

    def test_new_user_scores_30_at_medium(self, user):
        record = calculate_risk(user.id)
        assert record.score == 30
        assert record.level == "medium"

    def test_four_recent_clicks_without_reports(self, user, campaign, add_events):
        add_events(user, campaign, "clicked", count=4)
        record = calculate_risk(user.id)
        assert record.score == 100
        assert record.level == "critical"
        assert record.phishing_clicks == 4
        assert record.reported_threats == 0

    def test_old_events_only_count_as_history(self, user, campaign, add_events):
        add_events(user, campaign, "clicked", minutes_ago=60 * 24 * 45)
        record = calculate_risk(user.id)
        # Not a new user any more, but the click is outside the window
        assert record.phishing_clicks == 0
        assert record.score == 50

    def test_failed_attempt_counts_toward_completion(self, user, make_training, complete):
        training = make_training(assigned=[user])
        complete(training, user, score=10)
        record = calculate_risk(user.id)
        assert record.training_completion == 100
        assert record.score == 30

    def test_unfinished_training_raises_score(self, user, make_training):
        make_training(assigned=[user])
        record = calculate_risk(user.id)
        assert record.training_completion == 0
        assert record.score == 65
        assert record.level == "high"

    def test_fast_reporter(self, user, campaign, add_events):
        add_events(user, campaign, "sent", minutes_ago=10)
        add_events(user, campaign, "reported", minutes_ago=7)
        record = calculate_risk(user.id)
        assert record.time_to_report == pytest.approx(3, abs=0.01)
        assert record.score == 50 - 8 - 5

    def test_updates_cached_score(self, user, campaign, add_events):
        add_events(user, campaign, "clicked", count=4)
        calculate_risk(user.id)
        assert db.session.get(User, user.id).risk_score == 100

    def test_record_kept_when_cache_update_fails(self, monkeypatch, user, campaign, add_events):
        add_events(user, campaign, "clicked", count=4)
        real_commit = db.session.commit
        commits = []

        def flaky_commit():
            commits.append(1)
            if len(commits) == 2:
                raise OperationalError("UPDATE user", {}, Exception("database is locked"))
            real_commit()

        monkeypatch.setattr(db.session, "commit", flaky_commit)
        record = calculate_risk(user.id)
        monkeypatch.undo()

        assert record.score == 100
        assert RiskScore.query.filter_by(user_id=user.id).count() == 1
        assert db.session.get(User, user.id).risk_score == 0

    def test_unknown_user(self, app):
        with pytest.raises(NotFoundError):
            calculate_risk(999)

    def test_history_is_append_only(self, user, campaign, add_events):
        first = calculate_risk(user.id)
        first_id, first_score = first.id, first.score

        add_events(user, campaign, "clicked", count=2)
        calculate_risk(user.id)

        assert RiskScore.query.filter_by(user_id=user.id).count() == 2
        stored = db.session.get(RiskScore, first_id)
        assert stored.score == first_score

    def test_records_reject_updates(self, user):
        record = calculate_risk(user.id)
        record.score = 5
        with pytest.raises(ValueError):
            db.session.commit()
        db.session.rollback()


class TestScoreQueries:

    def test_current_score_missing(self, user):
        with pytest.raises(NotFoundError):
            get_current_score(user.id)

    def test_current_score_is_latest(self, user, campaign, add_events):
        calculate_risk(user.id)
        add_events(user, campaign, "clicked", count=4)
        latest = calculate_risk(user.id)
        assert get_current_score(user.id).id == latest.id

    def test_history_newest_first(self, user, campaign, add_events):
        first = calculate_risk(user.id)
        add_events(user, campaign, "clicked")
        second = calculate_risk(user.id)
        history = get_score_history(user.id)
        assert [r.id for r in history] == [second.id, first.id]

    def test_history_limit_is_capped(self, app, user):
        app.config["SCORE_HISTORY_MAX"] = 3
        try:
            for _ in range(5):
                calculate_risk(user.id)
            assert len(get_score_history(user.id, limit=10)) == 3
            assert len(get_score_history(user.id, limit=2)) == 2
        finally:
            app.config["SCORE_HISTORY_MAX"] = 50

    def test_history_unknown_user(self, app):
        with pytest.raises(NotFoundError):
            get_score_history(999)

    def test_history_rejects_non_positive_limit(self, user):
        with pytest.raises(ValidationError):
            get_score_history(user.id, limit=0)
