"""Email notifications for approval events."""
from __future__ import annotations

import logging
from typing import Optional

from flask import current_app
from flask_mail import Mail, Message

logger = logging.getLogger(__name__)


def _describe(approval) -> str:
    subject = approval.subject
    if approval.expense is not None:
        label = subject.merchant or "expense"
        return f"expense '{label}' ({subject.amount} {subject.currency})"
    return f"report '{subject.name}' ({subject.total_amount})"


class EmailService:
    """Service for sending approval workflow emails."""

    def __init__(self, mail: Optional[Mail] = None):
        self.mail = mail

    def notify_approval_requested(self, approval) -> bool:
        """Tell the current approver that something is waiting for them."""
        approver = approval.current_approver
        if approver is None:
            return False
        if approval.status.value == "awaiting_payment":
            subject = "SpendFlow - Payment Required"
            action = "is approved and waiting for payment"
        else:
            subject = "SpendFlow - Approval Required"
            action = f"needs your approval (step {approval.current_step} of {approval.total_steps})"
        submitter = approval.subject.submitter
        body = (
            f"Hi {approver.first_name},\n\n"
            f"The {_describe(approval)} submitted by {submitter.full_name if submitter else 'a colleague'} "
            f"{action}.\n"
        )
        return self._send_email(approver.email, subject, body)

    def notify_decision(self, approval, decision: str, reason: Optional[str] = None) -> bool:
        """Tell the submitter that their submission was approved, rejected or paid."""
        submitter = approval.subject.submitter
        if submitter is None:
            return False
        subject = f"SpendFlow - Your submission was {decision}"
        body = f"Hi {submitter.first_name},\n\nYour {_describe(approval)} was {decision}.\n"
        if reason:
            body += f"\nReason: {reason}\n"
        return self._send_email(submitter.email, subject, body)

    def _send_email(self, to_email: str, subject: str, text_body: str) -> bool:
        """Send email using Flask-Mail. Failures are logged, never raised."""
        if not current_app.config.get("APPROVAL_NOTIFICATIONS_ENABLED", True):
            return False
        try:
            if not self.mail:
                logger.error("Mail service not initialized")
                return False

            msg = Message(
                subject=subject,
                sender=current_app.config.get("MAIL_DEFAULT_SENDER"),
                recipients=[to_email],
                body=text_body,
            )
            self.mail.send(msg)
            logger.info("Email sent successfully to %s", to_email)
            return True
        except Exception as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            return False


email_service = EmailService()


def init_email_service(mail: Mail) -> None:
    """Initialize email service with Flask-Mail instance."""
    email_service.mail = mail


def notify_approval_requested(approval) -> bool:
    return email_service.notify_approval_requested(approval)


def notify_decision(approval, decision: str, reason: Optional[str] = None) -> bool:
    return email_service.notify_decision(approval, decision, reason)
