import math
from datetime import timedelta

import structlog
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from exceptions import NotFoundError, ValidationError
from models import (
    db, EventType, PhishingEvent, RiskLevel, RiskScore, Training,
    TrainingCompletion, User, training_assignments, utcnow,
)

logger = structlog.get_logger(__name__)

BASELINE_SCORE = 50
NEW_USER_SCORE = 30


def round_half_up(value):
    return int(math.floor(value + 0.5))


def risk_level(score):
    if score >= 75:
        return RiskLevel.CRITICAL
    if score >= 55:
        return RiskLevel.HIGH
    if score >= 30:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# --- SIGNAL HELPERS (shared with behavior / recommendations) ---

def get_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f'User {user_id} not found')
    return user


def assigned_trainings(user_id):
    """Trainings explicitly assigned to the user (open-to-all modules excluded)."""
    return (
        Training.query
        .join(training_assignments, training_assignments.c.training_id == Training.id)
        .filter(training_assignments.c.user_id == user_id)
        .order_by(Training.id)
        .all()
    )


def completed_training_ids(user_id, trainings):
    """Ids of `trainings` with a completion entry for the user, passed or not."""
    ids = [t.id for t in trainings]
    if not ids:
        return set()
    rows = (
        db.session.query(TrainingCompletion.training_id)
        .filter(TrainingCompletion.user_id == user_id, TrainingCompletion.training_id.in_(ids))
        .all()
    )
    return {row[0] for row in rows}


def completion_percentage(user_id, trainings):
    if not trainings:
        return 100.0
    return len(completed_training_ids(user_id, trainings)) / len(trainings) * 100


def average_minutes_to_report(events):
    """
    Pairs every "sent" event with the earliest "reported" event of the same
    campaign at or after it. Returns the mean delta in minutes, or None when
    nothing pairs up.
    """
    reports = {}
    for e in events:
        if e.event_type == EventType.REPORTED:
            reports.setdefault(e.campaign_id, []).append(e.timestamp)
    for stamps in reports.values():
        stamps.sort()

    deltas = []
    for e in events:
        if e.event_type != EventType.SENT:
            continue
        later = [t for t in reports.get(e.campaign_id, []) if t >= e.timestamp]
        if later:
            deltas.append((later[0] - e.timestamp).total_seconds() / 60)

    if not deltas:
        return None
    return sum(deltas) / len(deltas)


def compute_score(clicks, submissions, reports, completion, trainings_assigned, minutes_to_report=None):
    """
    Calculates User Risk Score (0-100), higher is riskier.
    Logic:
    + Points for clicks and credential submissions (Bad)
    + Points for never reporting after falling for a simulation (Bad)
    + Points for low training completion (Bad)
    - Points for reporting and for completed training (Good)
    - Points for reporting quickly (Good)
    """
    score = BASELINE_SCORE

    # 1. Phishing exposure
    score += min(clicks * 15, 45)
    score += min(submissions * 20, 40)
    if reports == 0 and (clicks > 0 or submissions > 0):
        score += 10

    # 2. Training gaps
    if completion < 50:
        score += 15
    elif completion < 80:
        score += 5

    # 3. Reward for Reporting
    score -= min(reports * 8, 24)

    # 4. Reward for Training (only when something was actually assigned)
    if trainings_assigned:
        if completion == 100:
            score -= 20
        elif completion >= 80:
            score -= 10

    # 5. Fast reporters
    if minutes_to_report is not None and minutes_to_report < 5:
        score -= 5

    # Cap between 0 and 100
    return round_half_up(max(0, min(score, 100)))


def _count_since(user_id, event_type, since):
    return PhishingEvent.query.filter(
        PhishingEvent.user_id == user_id,
        PhishingEvent.event_type == event_type,
        PhishingEvent.timestamp >= since,
    ).count()


# --- OPERATIONS ---

def calculate_risk(user_id):
    """Recompute the user's score and append it to their history."""
    user = get_user(user_id)
    now = utcnow()
    since = now - timedelta(days=current_app.config['RISK_WINDOW_DAYS'])

    clicks = _count_since(user_id, EventType.CLICKED, since)
    submissions = _count_since(user_id, EventType.SUBMITTED, since)
    reports = _count_since(user_id, EventType.REPORTED, since)

    history = (
        PhishingEvent.query
        .filter_by(user_id=user_id)
        .order_by(PhishingEvent.timestamp.asc(), PhishingEvent.id.asc())
        .all()
    )
    minutes_to_report = average_minutes_to_report(history)

    trainings = assigned_trainings(user_id)
    completion = completion_percentage(user_id, trainings)

    if not trainings and not history:
        # New, unproven users start below the neutral baseline
        score = NEW_USER_SCORE
    else:
        score = compute_score(clicks, submissions, reports, completion, len(trainings), minutes_to_report)

    record = RiskScore(
        user_id=user_id,
        score=score,
        level=risk_level(score),
        calculated_at=now,
        phishing_clicks=clicks,
        credentials_submitted=submissions,
        reported_threats=reports,
        training_completion=round_half_up(completion),
        time_to_report=minutes_to_report,
    )
    db.session.add(record)
    db.session.commit()
    logger.info('risk_calculated', user_id=user_id, score=score, level=record.level)

    # Sync to User.risk_score for quick lookups; the record stands even if this fails
    try:
        user.risk_score = score
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning('risk_cache_update_failed', user_id=user_id, exc_info=True)

    return record


def latest_score(user_id):
    return (
        RiskScore.query
        .filter_by(user_id=user_id)
        .order_by(RiskScore.calculated_at.desc(), RiskScore.id.desc())
        .first()
    )


def get_current_score(user_id):
    record = latest_score(user_id)
    if record is None:
        raise NotFoundError(f'No risk score found for user {user_id}')
    return record


def get_score_history(user_id, limit=None):
    """Newest first, at most SCORE_HISTORY_MAX entries."""
    get_user(user_id)
    cap = current_app.config['SCORE_HISTORY_MAX']
    if limit is None:
        limit = cap
    if limit < 1:
        raise ValidationError('limit must be a positive integer')
    return (
        RiskScore.query
        .filter_by(user_id=user_id)
        .order_by(RiskScore.calculated_at.desc(), RiskScore.id.desc())
        .limit(min(limit, cap))
        .all()
    )
