"""Transactional billing notifications (Resend).

To send to any recipient, verify a domain at resend.com/domains and set
EMAIL_FROM to an address at that domain.
"""

import logging
from html import escape
from typing import Iterable, List

from app.config import settings
from app.schemas.organisation import AffectedUser, PaymentFailureOutcome

logger = logging.getLogger(__name__)

_TEST_DOMAINS = ("@test.com", "@test.example.com", "@resend.dev")


def _should_skip_email(to_email: str) -> bool:
    """Skip sending in test env or to test domains (Resend sandbox restricts recipients)."""
    if settings.ENVIRONMENT == "test":
        return True
    return any(to_email.lower().endswith(d) for d in _TEST_DOMAINS)


def _wrap(title: str, body_html: str) -> str:
    return f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{escape(title)}</title></head>
<body style="font-family: sans-serif; line-height: 1.6; color: #333; max-width: 560px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #b91c1c;">{escape(title)}</h2>
  {body_html}
  <hr style="border: none; border-top: 1px solid #e2e8f0; margin: 24px 0;">
  <p style="color: #94a3b8; font-size: 12px;">{escape(settings.APP_NAME)} billing</p>
</body>
</html>
"""


def send(to_email: str, subject: str, html: str) -> bool:
    """
    Send one email.
    Returns True if sent (or deliberately skipped for a test recipient),
    False if not configured or the provider call failed. Never raises.
    """
    if not settings.RESEND_API_KEY:
        logger.info("Email skipped (RESEND_API_KEY not set): %r to %s", subject, to_email)
        return False
    if _should_skip_email(to_email):
        logger.info("Email skipped (test env or test domain): %r to %s", subject, to_email)
        return True

    try:
        import resend

        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send(
            {
                "from": settings.EMAIL_FROM,
                "to": [to_email],
                "subject": subject,
                "html": html,
            }
        )
        logger.info("Email %r sent to %s", subject, to_email)
        return True
    except Exception as e:
        logger.exception("Failed to send email %r to %s: %s", subject, to_email, e)
        return False


def send_payment_failed_warning(to_email: str, org_name: str, failure_count: int, reason: str) -> bool:
    """First-line warning: a platform payment failed but the account is still active."""
    body = f"""
  <p>We could not collect the latest subscription payment for <strong>{escape(org_name)}</strong>.</p>
  <p>Reason: {escape(reason)}</p>
  <p>This is failure number {failure_count}. After 2 consecutive failures the account is paused,
  and after 3 it is deactivated.</p>
  <p style="margin: 24px 0;">
    <a href="{escape(settings.FRONTEND_BILLING_URL)}" style="background: #4f46e5; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">Update payment method</a>
  </p>
"""
    return send(to_email, f"Payment failed for {org_name}", _wrap("Payment failed", body))


def send_payment_retry_warning(to_email: str, org_name: str, retry_count: int, amount_p: int, reason: str) -> bool:
    """Repeated retries of an overdue invoice have failed."""
    body = f"""
  <p>We have tried {retry_count} times to collect the overdue subscription payment of
  <strong>&pound;{amount_p / 100:.2f}</strong> for <strong>{escape(org_name)}</strong>, without success.</p>
  <p>Reason: {escape(reason)}</p>
  <p>Please update the payment method to keep the account active.</p>
  <p style="margin: 24px 0;">
    <a href="{escape(settings.FRONTEND_BILLING_URL)}" style="background: #4f46e5; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">Update payment method</a>
  </p>
"""
    return send(to_email, f"Action required: payment overdue for {org_name}", _wrap("Payment overdue", body))


def send_org_status_changed(to_email: str, org_name: str, new_status: str, reason: str) -> bool:
    """The account was paused or deactivated."""
    body = f"""
  <p>The account for <strong>{escape(org_name)}</strong> is now <strong>{escape(new_status.lower())}</strong>.</p>
  <p>{escape(reason)}</p>
  <p>Once the outstanding balance is settled, contact support to have the account reactivated.</p>
  <p style="margin: 24px 0;">
    <a href="{escape(settings.FRONTEND_BILLING_URL)}" style="background: #4f46e5; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">Review billing</a>
  </p>
"""
    return send(to_email, f"Your account has been {new_status.lower()}", _wrap("Account status changed", body))


def _admin_recipients(users: Iterable[AffectedUser]) -> List[str]:
    seen = []
    for user in users:
        if user.role.value in ("OWNER", "ADMIN") and user.email not in seen:
            seen.append(user.email)
    return seen


def notify_payment_failure(org_name: str, outcome: PaymentFailureOutcome) -> int:
    """
    Tell the organisation's owners/admins about a failure outcome.
    Returns the number of emails sent.
    """
    sent = 0
    for email in _admin_recipients(outcome.affected_users):
        if outcome.status_changed:
            ok = send_org_status_changed(email, org_name, outcome.org_status.value, outcome.reason)
        else:
            ok = send_payment_failed_warning(
                email,
                org_name,
                outcome.failure_count,
                outcome.failure_reason or "Your card was declined",
            )
        sent += int(ok)
    return sent


def notify_retry_warning(
    org_name: str,
    users: Iterable[AffectedUser],
    retry_count: int,
    amount_p: int,
    reason: str,
) -> int:
    """Warn owners/admins that payment retries keep failing. Returns emails sent."""
    return sum(
        int(send_payment_retry_warning(email, org_name, retry_count, amount_p, reason))
        for email in _admin_recipients(users)
    )
