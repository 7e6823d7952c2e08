"""
Pytest configuration and fixtures.

Every test gets a fresh in-memory database inside an app context.
"""

import os
from datetime import timedelta

import pytest

# Set testing mode before importing app
os.environ["PHISHSIM_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from models import (  # noqa: E402
    db, Badge, Campaign, PhishingEvent, Training, TrainingCompletion,
    TrainingQuestion, User, utcnow,
)


@pytest.fixture
def app():
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


# ============================================================================
# FACTORIES
# ============================================================================


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(department="Finance"):
        counter["n"] += 1
        user = User(email=f"user{counter['n']}@example.com", name=f"User {counter['n']}", department=department)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def campaign(app):
    campaign = Campaign(name="Urgent Password Reset", status="active")
    db.session.add(campaign)
    db.session.commit()
    return campaign


@pytest.fixture
def add_events(app):
    """add_events(user, campaign, "clicked", count=2, minutes_ago=10)"""

    def _add(user, campaign, event_type, count=1, minutes_ago=0, at=None):
        stamp = at or utcnow() - timedelta(minutes=minutes_ago)
        events = [
            PhishingEvent(user_id=user.id, campaign_id=campaign.id, event_type=event_type, timestamp=stamp)
            for _ in range(count)
        ]
        db.session.add_all(events)
        db.session.commit()
        return events

    return _add


@pytest.fixture
def make_training(app):
    def _make(questions=5, correct_index=1, passing_score=70, assigned=()):
        training = Training(title="Phishing Awareness", category="phishing", passing_score=passing_score)
        for i in range(questions):
            training.questions.append(TrainingQuestion(
                position=i,
                prompt=f"Question {i + 1}",
                options=["a", "b", "c", "d"],
                correct_index=correct_index,
            ))
        for u in assigned:
            training.assigned_users.append(u)
        db.session.add(training)
        db.session.commit()
        return training

    return _make


@pytest.fixture
def complete(app):
    def _complete(training, user, score):
        db.session.add(TrainingCompletion(training_id=training.id, user_id=user.id, score=score))
        db.session.commit()

    return _complete


@pytest.fixture
def first_training_badge(app):
    badge = Badge(name="First Steps", criteria="first-training")
    db.session.add(badge)
    db.session.commit()
    return badge
