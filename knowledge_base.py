"""
Rule-based security assistant.

A fixed, ordered table of topics. Each topic has case-insensitive regex
patterns and a canned reply made of titled sections. `chat` returns the reply
of the first topic (lowest priority number) with a pattern found anywhere in
the message; nothing is learned or fetched at runtime.
"""
import re
from dataclasses import dataclass
from typing import Tuple

from exceptions import ValidationError

FALLBACK_CATEGORY = 'fallback'


@dataclass(frozen=True)
class KnowledgeEntry:
    priority: int
    category: str
    title: str
    patterns: Tuple[re.Pattern, ...]
    sections: Tuple[Tuple[str, Tuple[str, ...]], ...]

    def matches(self, text):
        return any(p.search(text) for p in self.patterns)

    def render(self):
        parts = [f'**{self.title}**']
        for heading, lines in self.sections:
            parts.append(f'\n{heading}:')
            parts.extend(f'- {line}' for line in lines)
        return '\n'.join(parts)


def _entry(priority, category, title, patterns, sections):
    return KnowledgeEntry(
        priority=priority,
        category=category,
        title=title,
        patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
        sections=tuple((heading, tuple(lines)) for heading, lines in sections),
    )


_ENTRIES = [
    _entry(1, 'greeting', 'Hello! I am your security awareness assistant.',
           [r'^\s*(hi|hello|hey|hiya|greetings)\b', r'^\s*good (morning|afternoon|evening)\b'],
           [('I can help with', ['Spotting phishing emails', 'Passwords and MFA',
                                 'Reporting incidents', 'Your risk score and training'])]),
    _entry(2, 'phishing', 'Phishing',
           [r'phish', r'suspicious (e-?mail|link|message)', r'\bspoof', r'smishing'],
           [('Warning signs', ['Sender address that does not match the organisation',
                               'Urgent or threatening language',
                               'Links whose real URL differs from the text',
                               'Unexpected attachments or requests for credentials']),
            ('What to do', ['Do not click links or open attachments',
                            'Use the Report button in your mail client',
                            'If you already clicked, change your password and tell IT'])]),
    _entry(3, 'password', 'Passwords',
           [r'password', r'passphrase', r'credential'],
           [('Good practice', ['Use a long passphrase of four or more random words',
                               'Never reuse a password across sites',
                               'Store passwords in an approved password manager']),
            ('If a password leaks', ['Change it immediately', 'Enable MFA on the account'])]),
    _entry(4, 'mfa', 'Multi-factor authentication',
           [r'\bmfa\b', r'\b2fa\b', r'two[- ]factor', r'multi[- ]factor', r'authenticator'],
           [('Why it matters', ['A stolen password alone is no longer enough to log in']),
            ('Recommended', ['Authenticator apps or hardware keys over SMS codes',
                             'Never approve a login prompt you did not start'])]),
    _entry(5, 'ransomware', 'Ransomware',
           [r'ransom'],
           [('How it spreads', ['Malicious attachments', 'Compromised remote access']),
            ('If you suspect an infection', ['Disconnect from the network',
                                             'Do not pay or contact the attacker',
                                             'Report to IT immediately'])]),
    _entry(6, 'social-engineering', 'Social engineering',
           [r'social engineering', r'pretext', r'tailgat', r'vishing', r'impersonat'],
           [('Common tactics', ['Pretending to be IT, a manager or a supplier',
                                'Creating urgency or fear', 'Following you through secure doors']),
            ('Defence', ['Verify requests through a known channel', 'It is fine to say no'])]),
    _entry(7, 'gdpr', 'Data protection and GDPR',
           [r'\bgdpr\b', r'personal data', r'data protection', r'privacy'],
           [('Key points', ['Collect only the personal data you need',
                            'Share it only with authorised people',
                            'Report a suspected data breach straight away'])]),
    _entry(8, 'vpn', 'VPN and remote working',
           [r'\bvpn\b', r'public wi-?fi', r'remote work', r'working from home'],
           [('Remote work', ['Connect through the company VPN on untrusted networks',
                             'Lock your screen when you step away',
                             'Keep work data on managed devices'])]),
    _entry(9, 'malware', 'Malware',
           [r'malware', r'virus', r'trojan', r'spyware', r'\bworm\b'],
           [('Signs of infection', ['Unexpected pop-ups or slowness', 'Unknown programs starting']),
            ('What to do', ['Stop using the device', 'Report to IT',
                            'Do not plug in unknown USB drives'])]),
    _entry(10, 'risk', 'Your risk score',
           [r'\brisk\b', r'my score'],
           [('How it works', ['Scores run from 0 (safe) to 100 (high risk)',
                              'Clicks and credential submissions raise it',
                              'Reporting simulations and finishing training lower it']),
            ('Levels', ['low below 30', 'medium 30-54', 'high 55-74', 'critical 75 and above'])]),
    _entry(11, 'incident-reporting', 'Reporting an incident',
           [r'\breport', r'incident', r'breach', r'hacked'],
           [('Steps', ['Report suspicious emails with the Report button',
                       'Contact the security team for anything else',
                       'Note what happened and when; do not delete evidence'])]),
    _entry(12, 'training', 'Security training',
           [r'training', r'course', r'\bquiz', r'\bbadge', r'\bmodule'],
           [('Training', ['Open your assigned modules from the Training page',
                          'Pass the quiz to complete a module',
                          'Your first passed module earns a badge'])]),
    _entry(13, 'zero-trust', 'Zero trust',
           [r'zero[- ]trust'],
           [('Principles', ['Never trust, always verify', 'Least-privilege access',
                            'Assume breach and limit blast radius'])]),
    _entry(14, 'thanks', 'You are welcome!',
           [r'thank', r'\bthx\b', r'\bcheers\b'],
           [('Anything else?', ['Ask me about phishing, passwords, MFA or your risk score'])]),
]

# Loaded once; read-only afterwards
KNOWLEDGE_BASE = tuple(sorted(_ENTRIES, key=lambda e: e.priority))

TOPICS = tuple(e.category for e in KNOWLEDGE_BASE if e.category not in ('greeting', 'thanks'))

FALLBACK_REPLY = '\n'.join(
    ['I am not sure I understood that. I can help with these topics:']
    + [f'- {topic}' for topic in TOPICS]
)


def match(text):
    for entry in KNOWLEDGE_BASE:
        if entry.matches(text):
            return entry
    return None


def chat(message):
    if not isinstance(message, str) or not message.strip():
        raise ValidationError('Message is required')

    entry = match(message)
    if entry is None:
        return {'reply': FALLBACK_REPLY, 'category': FALLBACK_CATEGORY, 'matched': False}
    return {'reply': entry.render(), 'category': entry.category, 'matched': True}
