"""
Notification emails.

Each sender builds a plain-text body and an HTML alternative and sends it with
Django's configured email backend. Transport errors propagate; callers decide
whether a failure is fatal or only logged.
"""
import logging
from html import escape

from django.conf import settings
from django.core.mail import EmailMultiAlternatives

logger = logging.getLogger(__name__)

SIGNATURE = 'Thank you,\nThe donation team'


def _send(to_email, subject, text_body, html_body):
    message = EmailMultiAlternatives(
        subject=subject,
        body=text_body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )
    message.attach_alternative(html_body, 'text/html')
    message.send(fail_silently=False)
    logger.info(f"Sent '{subject}' email to {to_email}")


def _html(paragraphs):
    return ''.join(f'<p>{p}</p>' for p in paragraphs)


def reset_link(raw_token):
    return f"{settings.FRONTEND_URL.rstrip('/')}/reset-password?token={raw_token}"


def send_welcome_email(email, name):
    subject = 'Welcome to our donor community'
    text = (
        f"Hello {name},\n\n"
        "Thank you for becoming a donor. We will keep you informed as your "
        "donated items move through our programs.\n\n" + SIGNATURE
    )
    html = _html([
        f"Hello {escape(name)},",
        "Thank you for becoming a donor. We will keep you informed as your "
        "donated items move through our programs.",
        SIGNATURE.replace('\n', '<br>'),
    ])
    _send(email, subject, text, html)


def send_password_reset(email, raw_token):
    link = reset_link(raw_token)
    subject = 'Set your password'
    text = (
        "Use the link below to set a new password. The link expires in one hour.\n\n"
        f"{link}\n\n"
        "If you did not request this, you can ignore this email.\n\n" + SIGNATURE
    )
    html = _html([
        "Use the link below to set a new password. The link expires in one hour.",
        f'<a href="{escape(link)}">Reset password</a>',
        "If you did not request this, you can ignore this email.",
        SIGNATURE.replace('\n', '<br>'),
    ])
    _send(email, subject, text, html)


def send_account_update_email(email, name, role, status):
    subject = 'Your account has been updated'
    text = (
        f"Hello {name},\n\n"
        f"Your account details were updated by an administrator.\n"
        f"Role: {role}\nStatus: {status}\n\n" + SIGNATURE
    )
    html = _html([
        f"Hello {escape(name)},",
        "Your account details were updated by an administrator.",
        f"Role: <strong>{escape(role)}</strong><br>Status: <strong>{escape(status)}</strong>",
        SIGNATURE.replace('\n', '<br>'),
    ])
    _send(email, subject, text, html)


def send_approval_request_email(admin_email, admin_name, user_name, user_email):
    subject = 'New account awaiting approval'
    text = (
        f"Hello {admin_name},\n\n"
        f"{user_name} ({user_email}) registered and is waiting for approval.\n"
        f"Review pending accounts at {settings.FRONTEND_URL.rstrip('/')}/admin/users\n\n" + SIGNATURE
    )
    html = _html([
        f"Hello {escape(admin_name)},",
        f"<strong>{escape(user_name)}</strong> ({escape(user_email)}) registered and is waiting for approval.",
        f'<a href="{escape(settings.FRONTEND_URL.rstrip("/"))}/admin/users">Review pending accounts</a>',
        SIGNATURE.replace('\n', '<br>'),
    ])
    _send(admin_email, subject, text, html)


def send_donation_update_email(email, donor_name, item_id, status_type, date_modified, image_urls=None):
    """Tell a donor that one of their items reached a new status"""
    image_urls = image_urls or []
    when = date_modified.strftime('%Y-%m-%d') if hasattr(date_modified, 'strftime') else str(date_modified)
    subject = f'Update on your donated item #{item_id}'
    lines = [
        f"Hello {donor_name},",
        "",
        f"Your donated item #{item_id} is now: {status_type} (as of {when}).",
    ]
    if image_urls:
        lines += ["", "Photos:"] + list(image_urls)
    text = '\n'.join(lines) + "\n\n" + SIGNATURE
    images = ''.join(
        f'<img src="{escape(url)}" alt="Donated item photo" style="max-width:320px;margin:4px">'
        for url in image_urls
    )
    html = _html([
        f"Hello {escape(donor_name)},",
        f"Your donated item #{item_id} is now: <strong>{escape(status_type)}</strong> (as of {escape(when)}).",
    ]) + images + _html([SIGNATURE.replace('\n', '<br>')])
    _send(email, subject, text, html)
