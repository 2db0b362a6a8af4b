import logging
import smtplib
from email.message import EmailMessage
from socket import gaierror, timeout

from jinja2.sandbox import SandboxedEnvironment

from config_models import EmailConfig

logger = logging.getLogger(__name__)


class MailerError(Exception):
    """Exception raised for email sending errors."""

    pass


_env = SandboxedEnvironment(trim_blocks=True, lstrip_blocks=True)

# (subject, body) per activity type, rendered against the activity payload.
ACTIVITY_TEMPLATES = {
    "collective.member.created": (
        "{{ member.memberCollective.name or 'anonymous' }} joined "
        "{{ collective.name }} as {{ member.role | lower }}",
        """Hi,

{{ member.memberCollective.name or 'anonymous' }} just joined {{ collective.name }} as {{ member.role | lower }}.
{% if order and order.publicMessage %}

"{{ order.publicMessage }}"
{% endif %}
{% if order and order.subscription %}

They will contribute {{ order.totalAmountFormatted }} every {{ order.subscription.interval }}.
{% endif %}
{% if member.memberCollective.twitterHandle and collective.twitterHandle %}

Say thanks on Twitter:
@{{ member.memberCollective.twitterHandle }} thanks for your donation to @{{ collective.twitterHandle }}
{% endif %}
""",
    ),
    "ticket.confirmed": (
        "{{ order.quantity }} ticket{% if order.quantity != 1 %}s{% endif %} "
        "confirmed for {{ collective.name }}",
        """Hi {{ user.name or 'there' }},

Your order of {{ order.quantity }} x {{ tier.name }} for {{ collective.name }} is confirmed.
{% if order.totalAmount %}
Total paid: {{ order.totalAmountFormatted }}
{% endif %}

See you there!
""",
    ),
    "collective.transaction.created": (
        "New contribution of {{ order.totalAmountFormatted }} to {{ collective.name }}",
        """Hi,

{{ member.memberCollective.name or 'anonymous' }} contributed {{ order.totalAmountFormatted }} to {{ collective.name }}
{% if tier %}through the tier "{{ tier.name }}"{% endif %}.
""",
    ),
}


def render_activity_email(activity_type: str, payload: dict) -> tuple[str, str]:
    """Return ``(subject, body)`` for *activity_type* rendered with *payload*."""
    try:
        subject_tmpl, body_tmpl = ACTIVITY_TEMPLATES[activity_type]
    except KeyError:
        raise MailerError(f"No email template for activity {activity_type}")
    subject = _env.from_string(subject_tmpl).render(**payload)
    body = _env.from_string(body_tmpl).render(**payload)
    return " ".join(subject.split()), body


def send_email(config: EmailConfig, subject: str, recipient: str, body: str) -> bool:
    """Send a plain-text email.

    Returns:
        True if email was sent successfully.

    Raises:
        MailerError: If email sending fails.
    """
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = config.sender
    message["To"] = recipient
    message.set_content(body)

    try:
        logger.info(f"Sending email to {recipient} with subject: {subject}")
        with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=30) as server:
            server.starttls()
            if config.smtp_user:
                server.login(config.smtp_user, config.smtp_password)
            server.send_message(message)
        logger.info(f"Email sent successfully to {recipient}")
        return True

    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP authentication failed: {e}")
        raise MailerError(f"Email authentication failed: {e}")

    except smtplib.SMTPRecipientsRefused as e:
        logger.error(f"Recipients refused: {e}")
        raise MailerError(f"Email recipients refused: {e}")

    except smtplib.SMTPException as e:
        logger.error(f"SMTP error: {e}")
        raise MailerError(f"Failed to send email: {e}")

    except (gaierror, timeout) as e:
        logger.error(f"Network error while sending email: {e}")
        raise MailerError(f"Network error: could not connect to mail server: {e}")

    except OSError as e:
        logger.error(f"OS error while sending email: {e}")
        raise MailerError(f"Failed to send email: {e}")


class EmailNotifier:
    """Delivers activity notifications by email.

    Anything with the same ``send(activity_type, user, payload)`` signature
    can replace it through ``app.config["NOTIFIER"]``.
    """

    def __init__(self, config: EmailConfig):
        self.config = config

    def send(self, activity_type: str, user, payload: dict) -> bool:
        subject, body = render_activity_email(activity_type, payload)
        if not self.config.enabled:
            logger.info(f"Email disabled, not sending '{subject}' to {user.email}")
            return False
        return send_email(self.config, subject, user.email, body)
