from collections import Counter, namedtuple

import structlog
from flask import current_app

from models import EventType, PhishingEvent, utcnow
from risk_engine import (
    assigned_trainings, completed_training_ids, get_user, latest_score, round_half_up,
)

logger = structlog.get_logger(__name__)

# order is explicit so the evaluation sequence does not depend on list layout
FlagRule = namedtuple('FlagRule', 'order key message applies severity')

FLAG_RULES = tuple(sorted([
    FlagRule(1, 'phishing-clicks', 'Clicked simulated phishing links',
             lambda s: s['clicked'] > 0,
             lambda s: 'high' if s['clicked'] > 3 else 'medium'),
    FlagRule(2, 'credential-submission', 'Submitted credentials to a simulated phishing page',
             lambda s: s['submitted'] > 0,
             lambda s: 'high'),
    FlagRule(3, 'no-reports', 'No threat reports despite phishing exposure',
             lambda s: s['reported'] == 0 and s['clicked'] > 0,
             lambda s: 'medium'),
    FlagRule(4, 'low-training-completion', 'Less than half of assigned training completed',
             lambda s: s['completion'] < 50,
             lambda s: 'high'),
    FlagRule(5, 'partial-training-completion', 'Assigned training only partially completed',
             lambda s: 50 <= s['completion'] < 80,
             lambda s: 'medium'),
    FlagRule(6, 'frequent-opens', 'Opens many simulated phishing emails',
             lambda s: s['opened'] > 5,
             lambda s: 'low'),
], key=lambda rule: rule.order))

POSITIVE_RULES = tuple(sorted([
    FlagRule(1, 'reports-threats', 'Reports suspicious emails',
             lambda s: s['reported'] > 0, None),
    FlagRule(2, 'training-complete', 'Completed all assigned training',
             lambda s: s['completion'] == 100 and s['assigned'] > 0, None),
    FlagRule(3, 'no-clicks', 'Opened simulations without clicking',
             lambda s: s['clicked'] == 0 and s['opened'] > 0, None),
], key=lambda rule: rule.order))

NARRATIVES = {
    'excellent': (
        'Excellent security behaviour. This user spots and reports simulated '
        'attacks and keeps their training up to date.'
    ),
    'high-risk': (
        'Warning: this user shows high-risk behaviour. Prioritise targeted '
        'phishing training and follow up on outstanding modules.'
    ),
    'developing': (
        'Security awareness is developing. A few habits still need attention; '
        'keep reinforcing reporting and training completion.'
    ),
}


def evaluate_flags(signals):
    """Returns (flags, positive_flags); every rule is evaluated independently."""
    flags = [
        {'key': rule.key, 'flag': rule.message, 'severity': rule.severity(signals)}
        for rule in FLAG_RULES if rule.applies(signals)
    ]
    positive = [rule.message for rule in POSITIVE_RULES if rule.applies(signals)]
    return flags, positive


def select_narrative(flags, positive_flags):
    if not flags and positive_flags:
        return 'excellent'
    if any(f['severity'] == 'high' for f in flags):
        return 'high-risk'
    return 'developing'


def analyze_behavior(user_id):
    get_user(user_id)

    events = (
        PhishingEvent.query
        .filter_by(user_id=user_id)
        .order_by(PhishingEvent.timestamp.desc(), PhishingEvent.id.desc())
        .limit(current_app.config['ANALYSIS_EVENT_LIMIT'])
        .all()
    )
    record = latest_score(user_id)
    trainings = assigned_trainings(user_id)

    counts = Counter(e.event_type for e in events)
    completed = len(completed_training_ids(user_id, trainings))
    completion = completed / len(trainings) * 100 if trainings else 100.0

    signals = {
        'clicked': counts[EventType.CLICKED],
        'opened': counts[EventType.OPENED],
        'submitted': counts[EventType.SUBMITTED],
        'reported': counts[EventType.REPORTED],
        'completion': completion,
        'assigned': len(trainings),
    }
    flags, positive = evaluate_flags(signals)
    narrative = select_narrative(flags, positive)
    logger.info('behavior_analyzed', user_id=user_id, flags=len(flags), narrative=narrative)

    return {
        'userId': user_id,
        'score': record.score if record else None,
        'level': record.level if record else 'unknown',
        'counts': {
            'clicked': signals['clicked'],
            'opened': signals['opened'],
            'submitted': signals['submitted'],
            'reported': signals['reported'],
            'trainingsAssigned': len(trainings),
            'trainingsCompleted': completed,
            'trainingCompletion': round_half_up(completion),
        },
        'flags': flags,
        'positiveFlags': positive,
        'narrative': NARRATIVES[narrative],
        'narrativeType': narrative,
        'analyzedAt': utcnow().isoformat(),
    }
