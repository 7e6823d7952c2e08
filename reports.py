from fpdf import FPDF

from models import PhishingEvent, User
from risk_engine import latest_score


def _clip(text, width=25):
    # Shorten text if it's too long
    text = text if len(text) <= width else text[:width] + '..'
    # Core fonts are latin-1 only
    return text.encode('latin-1', 'replace').decode('latin-1')


def build_risk_report():
    """Risk audit of every user as PDF bytes."""
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font('Helvetica', 'B', 16)
    pdf.cell(0, 10, 'PhishSim Security Risk Report', align='C')
    pdf.ln(20)

    # Table Header
    pdf.set_font('Helvetica', 'B', 12)
    for label, width in (('Email', 60), ('Dept', 30), ('Score', 20), ('Level', 25), ('Last Device', 50)):
        pdf.cell(width, 10, label, border=1)
    pdf.ln()

    # Table Data
    pdf.set_font('Helvetica', size=10)
    for user in User.query.order_by(User.email).all():
        record = latest_score(user.id)
        last_event = (
            PhishingEvent.query
            .filter_by(user_id=user.id)
            .order_by(PhishingEvent.timestamp.desc())
            .first()
        )
        last_device = last_event.device_info if last_event else 'N/A'

        pdf.cell(60, 10, _clip(user.email, 30), border=1)
        pdf.cell(30, 10, _clip(user.department or '-', 12), border=1)
        pdf.cell(20, 10, str(record.score) if record else '-', border=1)
        pdf.cell(25, 10, record.level if record else 'unscored', border=1)
        pdf.cell(50, 10, _clip(last_device), border=1)
        pdf.ln()

    return bytes(pdf.output())
