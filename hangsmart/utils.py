"""Utility functions for the application."""

import smtplib

from flask import current_app, render_template
from flask_mail import Message

from .errors import UpstreamError, ValidationError
from .extensions import mail

SMTP_AUTH_ERROR_CODE = 534


class EmailError(UpstreamError):
    """Raised when an email could not be handed to the mail server."""

    pass


def send_email(to, subject, template, **kwargs):
    """Send an email to a recipient.

    Raises:
        EmailError: If sending the email fails.
    """
    msg = Message(
        subject,
        recipients=[to],
        html=render_template(template, **kwargs),
        sender=current_app.config["MAIL_DEFAULT_SENDER"],
    )
    try:
        mail.send(msg)
    except smtplib.SMTPAuthenticationError as e:
        if e.smtp_code == SMTP_AUTH_ERROR_CODE:
            raise EmailError(
                "Authentication failed. Google requires an App Password. "
                "Please verify your MAIL_USERNAME and MAIL_PASSWORD settings."
            ) from e
        raise EmailError(f"SMTP Authentication failed: {e}") from e
    except (smtplib.SMTPException, OSError) as e:
        raise EmailError(f"Failed to send email: {e}") from e


def validate_form(form):
    """Validate a submitted form, raising ValidationError with the first problem."""
    if form.validate_on_submit():
        return form
    for field_name, messages in form.errors.items():
        if messages:
            field = getattr(form, field_name, None)
            label = field.label.text if field is not None else field_name
            raise ValidationError(f"{label}: {messages[0]}")
    raise ValidationError()
