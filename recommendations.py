import structlog

from models import EventType, PhishingEvent, utcnow
from risk_engine import assigned_trainings, completed_training_ids, get_user, latest_score

logger = structlog.get_logger(__name__)

PRIORITY_RANK = {'high': 0, 'medium': 1, 'low': 2}
DEFAULT_SCORE = 50
RISK_REDUCTION_THRESHOLD = 70


def _entry(category, reason, priority):
    return {'category': category, 'reason': reason, 'priority': priority}


def build_candidates(event_types, has_incomplete_training, score):
    """Candidate list in evaluation order, before deduplication."""
    clicked = EventType.CLICKED in event_types
    submitted = EventType.SUBMITTED in event_types
    reported = EventType.REPORTED in event_types

    candidates = []
    if submitted:
        candidates.append(_entry(
            'phishing',
            'You entered credentials on a simulated phishing page. Complete the '
            'phishing awareness module and change any reused passwords.',
            'high',
        ))
    elif clicked:
        candidates.append(_entry(
            'phishing',
            'You clicked a simulated phishing link. Complete the phishing awareness module.',
            'high',
        ))
    if (clicked or submitted) and not reported:
        candidates.append(_entry(
            'incident-reporting',
            'You have never reported a suspicious email. Learn how to use the report button.',
            'high',
        ))
    if has_incomplete_training:
        candidates.append(_entry(
            'training',
            'You have assigned training modules that are not yet completed.',
            'medium',
        ))
    if score >= RISK_REDUCTION_THRESHOLD:
        candidates.append(_entry(
            'risk-reduction',
            'Your risk score is high. Book a session with the security team.',
            'high',
        ))

    # Baseline
    candidates.append(_entry(
        'password',
        'Password hygiene is a core security skill.',
        'high' if clicked or submitted else 'medium',
    ))
    candidates.append(_entry('mfa', 'Enable multi-factor authentication on every account that supports it.', 'medium'))
    candidates.append(_entry('social-engineering', 'Understanding social engineering reduces human risk.', 'low'))
    return candidates


def deduplicate(candidates):
    """One entry per category (highest priority wins), stable-sorted by priority."""
    best = {}
    for position, entry in enumerate(candidates):
        kept = best.get(entry['category'])
        if kept is None:
            best[entry['category']] = (position, entry)
        elif PRIORITY_RANK[entry['priority']] < PRIORITY_RANK[kept[1]['priority']]:
            best[entry['category']] = (kept[0], entry)
    ordered = sorted(best.values(), key=lambda pair: (PRIORITY_RANK[pair[1]['priority']], pair[0]))
    return [entry for _, entry in ordered]


def generate_recommendations(user_id):
    get_user(user_id)

    event_types = {
        row[0] for row in PhishingEvent.query
        .with_entities(PhishingEvent.event_type)
        .filter(PhishingEvent.user_id == user_id)
        .distinct()
        .all()
    }
    trainings = assigned_trainings(user_id)
    incomplete = len(completed_training_ids(user_id, trainings)) < len(trainings)
    record = latest_score(user_id)
    score = record.score if record else DEFAULT_SCORE

    recommendations = deduplicate(build_candidates(event_types, incomplete, score))
    logger.info('recommendations_generated', user_id=user_id, count=len(recommendations))
    return {
        'userId': user_id,
        'generatedAt': utcnow().isoformat(),
        'recommendations': recommendations,
    }
