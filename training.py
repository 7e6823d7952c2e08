import structlog

from exceptions import NotFoundError, ValidationError
from models import (
    db, Badge, BadgeAward, Training, TrainingCompletion, TrainingState, User,
    insert_if_absent, upsert, user_badges, user_completed_trainings, utcnow,
)
from risk_engine import get_user, round_half_up

logger = structlog.get_logger(__name__)

FIRST_TRAINING = 'first-training'
NO_SELECTION = -1


def get_training(training_id):
    training = db.session.get(Training, training_id)
    if training is None:
        raise NotFoundError(f'Training {training_id} not found')
    return training


def grade(questions, answers):
    """
    Returns (score, correct, feedback). A missing or non-integer answer counts
    as no selection and never matches a correct index.
    """
    correct = 0
    feedback = []
    for i, q in enumerate(questions):
        chosen = answers[i] if i < len(answers) else None
        if not isinstance(chosen, int) or isinstance(chosen, bool):
            chosen = NO_SELECTION
        is_correct = chosen == q.correct_index
        if is_correct:
            correct += 1
        feedback.append({
            'question': q.prompt,
            'chosen': chosen,
            'correctIndex': q.correct_index,
            'correct': is_correct,
        })

    score = round_half_up(correct / len(questions) * 100) if questions else 100
    return score, correct, feedback


def training_state(training, user_id):
    completion = TrainingCompletion.query.filter_by(training_id=training.id, user_id=user_id).first()
    if completion is None:
        return TrainingState.UNATTEMPTED
    if completion.score >= training.passing_score:
        return TrainingState.PASSED
    return TrainingState.FAILED


def award_badge(user_id, criteria=FIRST_TRAINING):
    """Award the badge for `criteria` once per user. Returns the badge if newly awarded."""
    badge = Badge.query.filter_by(criteria=criteria).first()
    if badge is None:
        return None

    awarded = insert_if_absent(
        BadgeAward, ['badge_id', 'user_id'],
        badge_id=badge.id, user_id=user_id, awarded_at=utcnow(),
    )
    if not awarded:
        return None
    insert_if_absent(user_badges, ['user_id', 'badge_id'], user_id=user_id, badge_id=badge.id)
    logger.info('badge_awarded', user_id=user_id, badge=badge.name, criteria=criteria)
    return badge


def submit_quiz(training_id, user_id, answers):
    """Grade a quiz attempt, record the completion and award badges on a pass."""
    training = get_training(training_id)
    if not isinstance(answers, list):
        raise ValidationError('answers must be an array of selected indices')
    get_user(user_id)

    score, correct, feedback = grade(training.questions, answers)
    passed = score >= training.passing_score

    # One row per (training, user); a resubmission overwrites it
    upsert(
        TrainingCompletion, ['training_id', 'user_id'],
        training_id=training.id, user_id=user_id, score=score, completed_at=utcnow(),
    )

    badge = None
    if passed:
        insert_if_absent(
            user_completed_trainings, ['user_id', 'training_id'],
            user_id=user_id, training_id=training.id,
        )
        badge = award_badge(user_id, FIRST_TRAINING)
    db.session.commit()

    logger.info('quiz_submitted', user_id=user_id, training_id=training.id, score=score, passed=passed)
    return {
        'score': score,
        'passed': passed,
        'total': len(training.questions),
        'correct': correct,
        'feedback': feedback,
        'state': (TrainingState.PASSED if passed else TrainingState.FAILED).value,
        'badgeAwarded': badge.name if badge else None,
    }


def trainings_for_user(user_id):
    """Trainings assigned to the user or open to everyone, answers hidden."""
    get_user(user_id)
    trainings = Training.query.order_by(Training.created_at.desc(), Training.id.desc()).all()
    result = []
    for t in trainings:
        assigned = [u.id for u in t.assigned_users]
        if assigned and user_id not in assigned:
            continue
        data = t.to_dict(reveal_answers=False)
        data['state'] = training_state(t, user_id).value
        result.append(data)
    return result


def assign_training(training_id, user_ids):
    training = get_training(training_id)
    if not isinstance(user_ids, list) or not all(isinstance(u, int) and not isinstance(u, bool) for u in user_ids):
        raise ValidationError('userIds must be an array of user ids')

    users = User.query.filter(User.id.in_(user_ids)).all() if user_ids else []
    missing = set(user_ids) - {u.id for u in users}
    if missing:
        raise NotFoundError(f'Users not found: {sorted(missing)}')

    for user in users:
        if user not in training.assigned_users:
            training.assigned_users.append(user)
    db.session.commit()
    logger.info('training_assigned', training_id=training.id, users=len(users))
    return training
