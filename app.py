import io
import logging
import sys

import click
import structlog
from flask import Flask, jsonify, request, send_file
from sqlalchemy.exc import SQLAlchemyError

from behavior import analyze_behavior
from config import get_config
from exceptions import InternalError, PhishSimError, ValidationError
from knowledge_base import chat
from models import db, Badge, Campaign, EventType, Training, TrainingQuestion, User
from recommendations import generate_recommendations
from reports import build_risk_report
from risk_engine import calculate_risk, get_current_score, get_score_history
from tracking import campaign_stats, record_event
from training import assign_training, submit_quiz, trainings_for_user


def configure_logging(level, fmt):
    logging.basicConfig(format='%(message)s', stream=sys.stdout, level=level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt='iso'),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if fmt == 'json' else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


app = Flask(__name__)

# --- CONFIGURATION ---
app.config.from_object(get_config())
configure_logging(app.config['LOG_LEVEL'], app.config['LOG_FORMAT'])
logger = structlog.get_logger(__name__)

db.init_app(app)


# --- ERRORS ---

@app.errorhandler(PhishSimError)
def handle_phishsim_error(err):
    return jsonify(err.to_dict()), err.status_code


@app.errorhandler(SQLAlchemyError)
def handle_store_error(err):
    db.session.rollback()
    logger.error('store_error', error=str(err), path=request.path)
    err = InternalError('The data store is unavailable')
    return jsonify(err.to_dict()), err.status_code


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


# --- RISK ROUTES ---

@app.route('/api/risk/calculate/<int:user_id>', methods=['POST'])
def recalculate_risk(user_id):
    return jsonify(calculate_risk(user_id).to_dict()), 201


@app.route('/api/risk/<int:user_id>')
def user_risk_score(user_id):
    return jsonify(get_current_score(user_id).to_dict())


@app.route('/api/risk/<int:user_id>/history')
def risk_history(user_id):
    limit = request.args.get('limit', type=int)
    return jsonify([r.to_dict() for r in get_score_history(user_id, limit)])


# --- AI ROUTES ---

@app.route('/api/ai/analyze/<int:user_id>')
def analyze_user(user_id):
    return jsonify(analyze_behavior(user_id))


@app.route('/api/ai/recommendations/<int:user_id>')
def recommendations(user_id):
    return jsonify(generate_recommendations(user_id))


@app.route('/api/ai/chat', methods=['POST'])
def chat_assistant():
    return jsonify(chat(_json_body().get('message')))


# --- TRAINING ROUTES ---

@app.route('/api/training/my/<int:user_id>')
def my_trainings(user_id):
    return jsonify(trainings_for_user(user_id))


@app.route('/api/training/<int:training_id>/submit', methods=['POST'])
def submit_training(training_id):
    data = _json_body()
    user_id = data.get('userId')
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise ValidationError('userId is required')
    return jsonify(submit_quiz(training_id, user_id, data.get('answers')))


@app.route('/api/training/<int:training_id>/assign', methods=['POST'])
def assign(training_id):
    training = assign_training(training_id, _json_body().get('userIds'))
    return jsonify(training.to_dict())


# --- ATTACK SIMULATION ROUTES ---

@app.route('/api/phishing/track', methods=['POST'])
def track_event():
    data = _json_body()
    event = record_event(
        data.get('campaignId'),
        data.get('userId'),
        data.get('eventType'),
        ip_address=data.get('ipAddress') or request.remote_addr,
        user_agent=data.get('userAgent') or request.headers.get('User-Agent', ''),
        metadata=data.get('metadata'),
    )
    return jsonify(event.to_dict()), 201


@app.route('/api/phishing/stats/<int:campaign_id>')
def stats(campaign_id):
    return jsonify(campaign_stats(campaign_id))


@app.route('/track/<int:campaign_id>/<int:user_id>')
def phishing_link(campaign_id, user_id):
    # This acts as the "Listener" behind simulated phishing links
    record_event(
        campaign_id, user_id, EventType.CLICKED,
        ip_address=request.remote_addr,
        user_agent=request.headers.get('User-Agent', 'Unknown'),
    )
    return """
    <div style="font-family: Arial; text-align: center; margin-top: 50px;">
        <h2>This was a simulated phishing test</h2>
        <p>No harm done. Look out for the warning signs next time and use the Report button.</p>
    </div>
    """


@app.route('/report_attack/<int:campaign_id>/<int:user_id>')
def report_attack(campaign_id, user_id):
    record_event(
        campaign_id, user_id, EventType.REPORTED,
        ip_address=request.remote_addr,
        user_agent=request.headers.get('User-Agent', 'Unknown'),
    )
    return '<h2 style="font-family: Arial; text-align: center;">Good job! Thanks for reporting.</h2>'


@app.route('/download_report')
def download_report():
    return send_file(
        io.BytesIO(build_risk_report()),
        as_attachment=True,
        download_name='Security_Report.pdf',
        mimetype='application/pdf',
    )


# --- INITIALIZATION ---

SEED_TRAININGS = [
    {
        'title': 'Phishing Awareness',
        'category': 'phishing',
        'duration_minutes': 15,
        'questions': [
            ('You receive an email from "support@your-bank-secure.net" asking you to verify '
             'your account. What should you do?',
             ['Click the link and verify immediately', 'Ignore it and do nothing',
              'Report it as phishing and do not click any links', 'Forward it to colleagues'],
             2),
            ('What is the most reliable way to check where a link in an email goes?',
             ['Trust the link text', 'Hover over it and read the real URL',
              'Check the email signature', 'Reply and ask the sender'],
             1),
        ],
    },
    {
        'title': 'Password Security',
        'category': 'password',
        'duration_minutes': 10,
        'questions': [
            ('Which is the strongest password?',
             ['Password123!', 'Summer2024', 'correct-horse-battery-staple', 'qwerty'],
             2),
            ('Where should work passwords be stored?',
             ['A sticky note', 'An approved password manager', 'A text file on the desktop',
              'Your browser on a shared PC'],
             1),
        ],
    },
]


@app.cli.command('seed-db')
def seed_db():
    """Create tables and add demo users, a campaign, trainings and badges."""
    db.create_all()
    # Check if users exist; if not, add them
    if User.query.first():
        click.echo('Database already seeded.')
        return

    users = [
        User(email='alice@finance.com', name='Alice', department='Finance'),
        User(email='bob@it.com', name='Bob', department='IT'),
        User(email='carol@hr.com', name='Carol', department='HR'),
        User(email='david@sales.com', name='David', department='Sales'),
        User(email='eve@marketing.com', name='Eve', department='Marketing'),
        User(email='frank@company.com', name='Frank', department='Executive'),
    ]
    db.session.add_all(users)
    db.session.add(Campaign(name='Urgent Password Reset', kind='phishing', status='active'))

    for module in SEED_TRAININGS:
        training = Training(
            title=module['title'],
            category=module['category'],
            duration_minutes=module['duration_minutes'],
            passing_score=70,
        )
        for position, (prompt, options, correct_index) in enumerate(module['questions']):
            training.questions.append(TrainingQuestion(
                position=position, prompt=prompt, options=options, correct_index=correct_index,
            ))
        db.session.add(training)

    db.session.add(Badge(name='First Steps', description='Passed a first training module',
                         criteria='first-training'))
    db.session.commit()
    click.echo(f'Database initialized with {len(users)} users!')


if __name__ == '__main__':
    app.run(debug=app.config.get('DEBUG', False))
