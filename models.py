import enum
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.dialects import postgresql, sqlite

db = SQLAlchemy()


def utcnow():
    # Naive UTC, matching what SQLite hands back from DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EventType:
    SENT = 'sent'
    OPENED = 'opened'
    CLICKED = 'clicked'
    SUBMITTED = 'submitted'
    REPORTED = 'reported'

    ALL = (SENT, OPENED, CLICKED, SUBMITTED, REPORTED)


class RiskLevel:
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


class TrainingState(str, enum.Enum):
    UNATTEMPTED = 'unattempted'
    FAILED = 'attempted-failed'
    PASSED = 'attempted-passed'


# --- ASSOCIATION TABLES ---

training_assignments = db.Table(
    'training_assignments',
    db.Column('training_id', db.Integer, db.ForeignKey('training.id'), primary_key=True),
    db.Column('user_id', db.Integer, db.ForeignKey('user.id'), primary_key=True),
)

# Cached on the user, authoritative data lives in TrainingCompletion / BadgeAward
user_completed_trainings = db.Table(
    'user_completed_trainings',
    db.Column('user_id', db.Integer, db.ForeignKey('user.id'), primary_key=True),
    db.Column('training_id', db.Integer, db.ForeignKey('training.id'), primary_key=True),
)

user_badges = db.Table(
    'user_badges',
    db.Column('user_id', db.Integer, db.ForeignKey('user.id'), primary_key=True),
    db.Column('badge_id', db.Integer, db.ForeignKey('badge.id'), primary_key=True),
)


# --- MODELS ---

class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(120), default='')
    department = db.Column(db.String(50), nullable=False, default='')
    risk_score = db.Column(db.Integer, default=0)
    history = db.relationship('PhishingEvent', backref='user', lazy=True)
    completed_trainings = db.relationship('Training', secondary=user_completed_trainings, lazy='selectin')
    badges = db.relationship('Badge', secondary=user_badges, lazy='selectin')

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'department': self.department,
            'riskScore': self.risk_score,
            'trainingsCompleted': [t.id for t in self.completed_trainings],
            'badges': [b.id for b in self.badges],
        }


class Campaign(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    kind = db.Column(db.String(20), default='phishing')
    status = db.Column(db.String(20), default='draft')
    created_at = db.Column(db.DateTime, default=utcnow)

    # Counters, one per event type
    sent = db.Column(db.Integer, default=0, nullable=False)
    opened = db.Column(db.Integer, default=0, nullable=False)
    clicked = db.Column(db.Integer, default=0, nullable=False)
    submitted = db.Column(db.Integer, default=0, nullable=False)
    reported = db.Column(db.Integer, default=0, nullable=False)

    events = db.relationship('PhishingEvent', backref='campaign', lazy=True)


class PhishingEvent(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    campaign_id = db.Column(db.Integer, db.ForeignKey('campaign.id'), nullable=False)
    event_type = db.Column(db.String(20), nullable=False)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    # Fingerprinting
    ip_address = db.Column(db.String(64), default='')
    user_agent = db.Column(db.String(300), default='')
    device_info = db.Column(db.String(200), default='Unknown')
    details = db.Column('metadata', db.JSON, default=dict)

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'campaignId': self.campaign_id,
            'eventType': self.event_type,
            'timestamp': self.timestamp.isoformat(),
            'deviceInfo': self.device_info,
            'metadata': self.details or {},
        }


class Training(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default='')
    category = db.Column(db.String(50), default='general')
    duration_minutes = db.Column(db.Integer, default=0)
    passing_score = db.Column(db.Integer, default=70, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    questions = db.relationship(
        'TrainingQuestion', backref='training', lazy='selectin',
        order_by='TrainingQuestion.position', cascade='all, delete-orphan',
    )
    # Empty means open to everyone
    assigned_users = db.relationship('User', secondary=training_assignments, lazy='selectin')
    completions = db.relationship(
        'TrainingCompletion', backref='training', lazy=True, cascade='all, delete-orphan',
    )

    def to_dict(self, reveal_answers=False):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'category': self.category,
            'durationMinutes': self.duration_minutes,
            'passingScore': self.passing_score,
            'questions': [q.to_dict(reveal_answers) for q in self.questions],
            'assignedTo': [u.id for u in self.assigned_users],
        }


class TrainingQuestion(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    training_id = db.Column(db.Integer, db.ForeignKey('training.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False)
    prompt = db.Column(db.Text, nullable=False)
    options = db.Column(db.JSON, nullable=False, default=list)
    correct_index = db.Column(db.Integer, nullable=False)

    def to_dict(self, reveal_answer=False):
        data = {'question': self.prompt, 'options': list(self.options or [])}
        if reveal_answer:
            data['correctIndex'] = self.correct_index
        return data


class TrainingCompletion(db.Model):
    __table_args__ = (db.UniqueConstraint('training_id', 'user_id', name='uq_completion_training_user'),)

    id = db.Column(db.Integer, primary_key=True)
    training_id = db.Column(db.Integer, db.ForeignKey('training.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    score = db.Column(db.Integer, nullable=False)
    completed_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class RiskScore(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    score = db.Column(db.Integer, nullable=False)
    level = db.Column(db.String(10), nullable=False)
    calculated_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Factor breakdown
    phishing_clicks = db.Column(db.Integer, default=0)
    credentials_submitted = db.Column(db.Integer, default=0)
    reported_threats = db.Column(db.Integer, default=0)
    training_completion = db.Column(db.Integer, default=0)  # 0-100 %
    time_to_report = db.Column(db.Float, nullable=True)  # avg minutes, None if never matched

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'score': self.score,
            'level': self.level,
            'factors': {
                'phishingClicks': self.phishing_clicks,
                'credentialsSubmitted': self.credentials_submitted,
                'reportedThreats': self.reported_threats,
                'trainingCompletion': self.training_completion,
                'timeToReport': self.time_to_report,
            },
            'calculatedAt': self.calculated_at.isoformat(),
        }


@event.listens_for(RiskScore, 'before_update')
def _risk_scores_are_immutable(mapper, connection, target):
    raise ValueError('RiskScore records are immutable; calculate a new one instead')


class Badge(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(300), default='')
    criteria = db.Column(db.String(30), default='custom', index=True)
    awards = db.relationship('BadgeAward', backref='badge', lazy=True)


class BadgeAward(db.Model):
    __table_args__ = (db.UniqueConstraint('badge_id', 'user_id', name='uq_award_badge_user'),)

    id = db.Column(db.Integer, primary_key=True)
    badge_id = db.Column(db.Integer, db.ForeignKey('badge.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    awarded_at = db.Column(db.DateTime, default=utcnow, nullable=False)


# --- CONDITIONAL WRITES ---

def _insert(table):
    table = getattr(table, '__table__', table)
    dialect = db.session.get_bind().dialect.name
    if dialect == 'postgresql':
        return postgresql.insert(table)
    if dialect == 'sqlite':
        return sqlite.insert(table)
    raise NotImplementedError(f'conditional writes not supported on {dialect}')


def insert_if_absent(table, keys, **values):
    """Single-statement insert that is a no-op when `keys` already exist.

    Returns True when a row was written.
    """
    stmt = _insert(table).values(**values).on_conflict_do_nothing(index_elements=keys)
    return db.session.execute(stmt).rowcount == 1


def upsert(table, keys, **values):
    """Insert, or overwrite the non-key columns of the row matching `keys`."""
    stmt = _insert(table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=keys,
        set_={k: v for k, v in values.items() if k not in keys},
    )
    db.session.execute(stmt)
