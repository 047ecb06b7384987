"""
Lifecycle email templates and the {{variable}} renderer.

Each template has a subject, a plain-text body, an optional HTML body and
an is_marketing flag. Marketing emails respect the user's opt-out;
transactional ones always send.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import quote

from flask import current_app, has_app_context
from markupsafe import escape

logger = logging.getLogger(__name__)

_VARIABLE = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class EmailTemplate:
    key: str
    subject: str
    body: str
    is_marketing: bool
    html: str | None = None


_FOOTER = "\n\n---\n{{course_name}}"
_MARKETING_FOOTER = _FOOTER + "\nUnsubscribe: {{unsubscribe_url}}"


EMAIL_TEMPLATES: dict[str, EmailTemplate] = {
    # ── Transactional (always sent) ──────────────────────────
    "WELCOME": EmailTemplate(
        key="WELCOME",
        subject="Welcome to {{course_name}}, {{name}}!",
        body=(
            "Hi {{name}},\n\n"
            "Welcome to {{course_name}}! You now have access to the course platform.\n\n"
            "Here's what to do next:\n\n"
            "1. Complete your profile: {{profile_url}}\n"
            "2. Start with Video 1 (it's free!): {{first_lesson_url}}\n"
            "3. Join our Discord community: {{discord_url}}\n\n"
            "If you have any questions, just reply to this email.\n\n"
            "Happy learning!"
        ) + _MARKETING_FOOTER,
        html=(
            "<!DOCTYPE html>\n<html>\n<head><meta charset=\"utf-8\"></head>\n"
            "<body style=\"font-family: sans-serif; line-height: 1.6; max-width: 600px; margin: 0 auto;\">\n"
            "  <h1>Welcome to {{course_name}}!</h1>\n"
            "  <p>Hi {{name}},</p>\n"
            "  <p>You now have access to the course platform. Here's what to do next:</p>\n"
            "  <ol>\n"
            "    <li><a href=\"{{profile_url}}\">Complete your profile</a></li>\n"
            "    <li><a href=\"{{first_lesson_url}}\">Start with Video 1 (it's free!)</a></li>\n"
            "    <li><a href=\"{{discord_url}}\">Join our Discord community</a></li>\n"
            "  </ol>\n"
            "  <p>If you have any questions, just reply to this email.</p>\n"
            "  <hr>\n"
            "  <p style=\"font-size: 12px;\">{{course_name}}<br>"
            "<a href=\"{{unsubscribe_url}}\">Unsubscribe</a></p>\n"
            "</body>\n</html>"
        ),
        is_marketing=False,
    ),
    "PAYMENT_FAILED": EmailTemplate(
        key="PAYMENT_FAILED",
        subject="Action needed: Payment failed for {{course_name}}",
        body=(
            "Hi {{name}},\n\n"
            "We tried to charge your card for your {{course_name}} subscription, "
            "but the payment failed.\n\n"
            "Your access is still active for now. Please update your payment method "
            "to avoid any interruption:\n\n"
            "Update payment: {{update_payment_url}}\n\n"
            "If you're having trouble, just reply to this email."
        ) + _FOOTER,
        is_marketing=False,
    ),
    "PAYMENT_FAILED_FINAL": EmailTemplate(
        key="PAYMENT_FAILED_FINAL",
        subject="Final notice: Your {{course_name}} access will be paused",
        body=(
            "Hi {{name}},\n\n"
            "We've tried several times to charge your card, but the payments have failed.\n\n"
            "To keep your access to the course, please update your payment method now:\n\n"
            "Update payment: {{update_payment_url}}\n\n"
            "If we don't hear from you, your access will be paused. Your progress is "
            "saved and you can reactivate anytime."
        ) + _FOOTER,
        is_marketing=False,
    ),
    "SUBSCRIPTION_CANCELLED": EmailTemplate(
        key="SUBSCRIPTION_CANCELLED",
        subject="Your {{course_name}} subscription has been cancelled",
        body=(
            "Hi {{name}},\n\n"
            "Your {{course_name}} subscription has been cancelled.\n\n"
            "You'll retain access until {{access_end_date}}.\n\n"
            "Your progress is saved. If you'd like to resubscribe, you can do so here:\n"
            "{{resubscribe_url}}"
        ) + _FOOTER,
        is_marketing=False,
    ),
    "PASSWORD_RESET": EmailTemplate(
        key="PASSWORD_RESET",
        subject="Reset your {{course_name}} password",
        body=(
            "Hi {{name}},\n\n"
            "We received a request to reset your password. Use the link below to "
            "create a new one:\n\n"
            "{{reset_url}}\n\n"
            "This link expires in 1 hour. If you didn't request this, you can "
            "safely ignore this email."
        ) + _FOOTER,
        is_marketing=False,
    ),

    # ── Marketing (respect opt-out) ──────────────────────────
    "START_JOURNEY": EmailTemplate(
        key="START_JOURNEY",
        subject="Ready to start your journey, {{name}}?",
        body=(
            "Hi {{name}},\n\n"
            "You signed up but haven't started the course yet.\n\n"
            "Video 1 is completely free and gives you a solid foundation for "
            "everything that follows:\n\n"
            "Start Video 1: {{first_lesson_url}}\n\n"
            "See you inside!"
        ) + _MARKETING_FOOTER,
        is_marketing=True,
    ),
    "ABANDONMENT_1": EmailTemplate(
        key="ABANDONMENT_1",
        subject="You're making great progress, {{name}}!",
        body=(
            "Hi {{name}},\n\n"
            "You just completed the first lesson. Awesome start!\n\n"
            "Ready to continue? Unlock all modules now:\n"
            "{{pricing_url}}\n\n"
            "If you have questions about what's included, just reply."
        ) + _MARKETING_FOOTER,
        is_marketing=True,
    ),
    "ABANDONMENT_2": EmailTemplate(
        key="ABANDONMENT_2",
        subject="Quick question about {{course_name}}",
        body=(
            "Hi {{name}},\n\n"
            "You haven't continued after Video 1. Is there something I can help with?\n\n"
            "Q: Is this too advanced for me?\n"
            "A: If you can write basic code, you're ready.\n\n"
            "Q: What if it's not what I expected?\n"
            "A: 90-day money-back guarantee, no questions asked.\n\n"
            "Still deciding? See the plans: {{pricing_url}}"
        ) + _MARKETING_FOOTER,
        is_marketing=True,
    ),
    "ABANDONMENT_3": EmailTemplate(
        key="ABANDONMENT_3",
        subject="Last call: Special offer inside",
        body=(
            "Hi {{name}},\n\n"
            "Since you've completed the free lesson, use code WELCOME20 for 20% off "
            "your first month. This code expires in 48 hours.\n\n"
            "Claim your discount: {{pricing_url}}?code=WELCOME20"
        ) + _MARKETING_FOOTER,
        is_marketing=True,
    ),
    "MODULE_COMPLETE": EmailTemplate(
        key="MODULE_COMPLETE",
        subject="Module {{module_number}} Complete!",
        body=(
            "Hi {{name}},\n\n"
            "Congratulations! You've completed Module {{module_number}}: {{module_title}}!\n\n"
            "Here's what's coming up in Module {{next_module_number}}:\n\n"
            "{{next_module_description}}\n\n"
            "Keep the momentum going:\n"
            "{{next_module_url}}\n\n"
            "You're {{progress_percentage}}% through the course."
        ) + _MARKETING_FOOTER,
        is_marketing=True,
    ),
    "COURSE_COMPLETE": EmailTemplate(
        key="COURSE_COMPLETE",
        subject="You did it! Course Complete!",
        body=(
            "Hi {{name}},\n\n"
            "Congratulations! You've completed the entire {{course_name}} course: "
            "{{lessons_completed}} lessons.\n\n"
            "What's next?\n\n"
            "1. Join the alumni channel on Discord: {{discord_alumni_url}}\n"
            "2. Share your achievement: {{share_url}}\n"
            "3. Download your completion certificate: {{certificate_url}}"
        ) + _MARKETING_FOOTER,
        is_marketing=True,
    ),
    "INACTIVE_NUDGE": EmailTemplate(
        key="INACTIVE_NUDGE",
        subject="Haven't seen you in a while, {{name}}",
        body=(
            "Hi {{name}},\n\n"
            "Your progress is saved:\n"
            "- Last completed: {{last_lesson}}\n"
            "- Up next: {{next_lesson}}\n\n"
            "Ready to jump back in?\n"
            "{{resume_url}}"
        ) + _MARKETING_FOOTER,
        is_marketing=True,
    ),
    "RENEWAL_REMINDER": EmailTemplate(
        key="RENEWAL_REMINDER",
        subject="Your subscription renews in 3 days",
        body=(
            "Hi {{name}},\n\n"
            "Your {{course_name}} subscription renews on {{renewal_date}} for {{amount}}.\n\n"
            "Your current progress:\n"
            "- Modules completed: {{modules_completed}}/{{total_modules}}\n"
            "- Course progress: {{progress_percentage}}%\n\n"
            "No action needed. Want to make changes?\n"
            "- Manage billing: {{billing_url}}\n"
            "- Change plan: {{pricing_url}}"
        ) + _MARKETING_FOOTER,
        is_marketing=True,
    ),
}


def get_template(key: str) -> EmailTemplate | None:
    return EMAIL_TEMPLATES.get(key)


def marketing_templates() -> list[EmailTemplate]:
    return [t for t in EMAIL_TEMPLATES.values() if t.is_marketing]


def transactional_templates() -> list[EmailTemplate]:
    return [t for t in EMAIL_TEMPLATES.values() if not t.is_marketing]


def default_variables() -> dict:
    """App-wide defaults merged under caller-supplied variables."""
    base_url = "http://localhost:5001"
    course_name = "the course"
    discord_url = ""
    discord_alumni_url = ""
    if has_app_context():
        base_url = current_app.config.get("BASE_URL", base_url).rstrip("/")
        course_name = current_app.config.get("COURSE_NAME", course_name)
        discord_url = current_app.config.get("DISCORD_URL", "")
        discord_alumni_url = current_app.config.get("DISCORD_ALUMNI_URL", "")
    defaults = {
        "name": "there",
        "course_name": course_name,
        "profile_url": f"{base_url}/onboarding",
        "first_lesson_url": f"{base_url}/dashboard",
        "pricing_url": f"{base_url}/pricing",
        "billing_url": f"{base_url}/dashboard/billing",
        "update_payment_url": f"{base_url}/dashboard/billing",
        "resubscribe_url": f"{base_url}/pricing",
        "resume_url": f"{base_url}/dashboard",
        "base_url": base_url,
    }
    if discord_url:
        defaults["discord_url"] = discord_url
    if discord_alumni_url:
        defaults["discord_alumni_url"] = discord_alumni_url
    return defaults


def _merged(variables: dict) -> dict:
    merged = {**default_variables(), **{k: v for k, v in variables.items() if v is not None}}
    if not merged.get("unsubscribe_url") and merged.get("email"):
        merged["unsubscribe_url"] = (
            f"{merged['base_url']}/unsubscribe?email={quote(str(merged['email']), safe='')}"
        )
    return merged


def render_template(text: str, variables: dict, escape_html: bool = False) -> str:
    """Substitute {{name}} placeholders.

    Unknown variables are left as-is (and logged) so a missing value is
    visible in the delivered email rather than silently blank.
    """
    merged = _merged(variables)

    def _sub(match: re.Match) -> str:
        key = match.group(1)
        if key not in merged:
            logger.warning("Missing template variable: %s", key)
            return match.group(0)
        value = str(merged[key])
        return str(escape(value)) if escape_html else value

    return _VARIABLE.sub(_sub, text)


def render_email(template: EmailTemplate, variables: dict) -> dict:
    return {
        "subject": render_template(template.subject, variables),
        "text": render_template(template.body, variables),
        "html": render_template(template.html, variables, escape_html=True) if template.html else None,
    }


def validate_variables(text: str, variables: dict) -> dict:
    """Report placeholders in text with no value after defaults."""
    merged = _merged(variables)
    missing: list[str] = []
    for key in _VARIABLE.findall(text):
        if key not in merged and key not in missing:
            missing.append(key)
    return {"valid": not missing, "missing": missing}
