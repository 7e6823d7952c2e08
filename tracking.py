import structlog

from exceptions import NotFoundError, ValidationError
from models import db, Campaign, EventType, PhishingEvent, User
from risk_engine import calculate_risk

logger = structlog.get_logger(__name__)

# Events that change the risk picture enough to recalculate straight away
SIGNIFICANT_EVENTS = (EventType.CLICKED, EventType.SUBMITTED, EventType.REPORTED)


def fingerprint_device(user_agent):
    ua = user_agent or ''
    if 'Mobile' in ua:
        return 'Mobile Device'
    elif 'Windows' in ua:
        return 'Windows PC'
    elif 'Mac' in ua:
        return 'Mac OS'
    elif ua:
        return 'Linux/Other'
    return 'Unknown'


def record_event(campaign_id, user_id, event_type, ip_address='', user_agent='', metadata=None):
    """Append a simulation event, bump the campaign counter, rescore if significant."""
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in (campaign_id, user_id)):
        raise ValidationError('campaignId and userId must be integers')
    if event_type not in EventType.ALL:
        raise ValidationError(f'Unknown event type: {event_type!r}', details={'allowed': list(EventType.ALL)})
    campaign = db.session.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFoundError(f'Campaign {campaign_id} not found')
    if db.session.get(User, user_id) is None:
        raise NotFoundError(f'User {user_id} not found')

    event = PhishingEvent(
        campaign_id=campaign.id,
        user_id=user_id,
        event_type=event_type,
        ip_address=ip_address or '',
        user_agent=user_agent or '',
        device_info=fingerprint_device(user_agent),
        details=metadata or {},
    )
    db.session.add(event)
    # Atomic counter increment
    counter = getattr(Campaign, event_type)
    Campaign.query.filter_by(id=campaign.id).update({counter: counter + 1})
    db.session.commit()
    logger.info('event_recorded', user_id=user_id, campaign_id=campaign_id, event_type=event_type)

    if event_type in SIGNIFICANT_EVENTS:
        calculate_risk(user_id)
    return event


def _rate(part, whole):
    return round(part / whole * 100, 1) if whole > 0 else 0.0


def campaign_stats(campaign_id):
    campaign = db.session.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFoundError(f'Campaign {campaign_id} not found')
    stats = {t: getattr(campaign, t) for t in EventType.ALL}
    return {
        'campaign': campaign.name,
        'stats': stats,
        'clickRate': _rate(campaign.clicked, campaign.sent),
        'reportRate': _rate(campaign.reported, campaign.sent),
    }
