"""
Email templates for change notifications.

Each template takes a source row and returns an `OutgoingEmail`. Two business
unit variants exist, selected by the row's `BU` field:
- 1        -> Solutions
- anything -> Consulting

User-supplied fields may arrive HTML-entity encoded from web forms; they are
decoded first and escaped again when interpolated.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from core import settings
from core.mailer import OutgoingEmail, split_addresses

INQUIRY_CONFIRMATION = "inquiry_confirmation"
SUBSCRIBER_WELCOME = "subscriber_welcome"
COMMENT_MODERATION = "comment_moderation"

# Templates whose context needs the parent post title.
NEEDS_POST_TITLE = {COMMENT_MODERATION}


@dataclass(frozen=True)
class BusinessUnit:
    key: int
    name: str
    logo: str
    color: str
    sender: str
    website: str
    email: str
    phone: str
    blog_url: str
    service_label: str
    cta_text: str
    topic: str
    bcc: tuple[str, ...] = ()


@dataclass(frozen=True)
class TemplateContext:
    today: date
    admin_email: str | None = None
    admin_bcc: tuple[str, ...] = ()
    sender_override: str | None = None
    post_title: str | None = None
    moderation_url: str | None = None


def context_from_env(*, today: date | None = None, post_title: str | None = None) -> TemplateContext:
    return TemplateContext(
        today=today or date.today(),
        admin_email=settings.env_str("ADMIN_EMAIL") or None,
        admin_bcc=split_addresses(settings.env_str("ADMIN_BCC")),
        sender_override=settings.env_str("SMTP_FROM") or None,
        post_title=post_title,
        moderation_url=settings.env_str("MODERATION_URL") or None,
    )


def decode_entities(value: Any) -> str:
    if value is None:
        return ""
    return html.unescape(str(value))


def _esc(value: Any) -> str:
    return html.escape(decode_entities(value))


def _bu_key(row: dict[str, Any]) -> int:
    try:
        return 1 if int(row.get("BU") or 0) == 1 else 0
    except (TypeError, ValueError):
        return 0


def business_unit(row: dict[str, Any], ctx: TemplateContext) -> BusinessUnit:
    if _bu_key(row) == 1:
        return BusinessUnit(
            key=1,
            name=settings.env_str("BU1_NAME", "Solutions"),
            logo=settings.env_str("BU1_LOGO_URL", "https://solutions.example.com/images/logo.png"),
            color="#0078d4",
            sender=ctx.sender_override or settings.env_str("BU1_FROM", "info@solutions.example.com"),
            website=settings.env_str("BU1_WEBSITE", "https://solutions.example.com/"),
            email=settings.env_str("BU1_CONTACT_EMAIL", "info@solutions.example.com"),
            phone=settings.env_str("BU1_PHONE", ""),
            blog_url=settings.env_str("BU1_BLOG_URL", "https://solutions.example.com/insights/blog.html"),
            service_label="digital services",
            cta_text="Explore our services",
            topic="technology",
            bcc=(ctx.admin_email,) if ctx.admin_email else (),
        )
    return BusinessUnit(
        key=0,
        name=settings.env_str("BU0_NAME", "Consulting"),
        logo=settings.env_str("BU0_LOGO_URL", "https://www.example.com/images/logo.png"),
        color="#e63946",
        sender=ctx.sender_override or settings.env_str("BU0_FROM", "support@example.com"),
        website=settings.env_str("BU0_WEBSITE", "https://www.example.com/"),
        email=settings.env_str("BU0_CONTACT_EMAIL", "support@example.com"),
        phone=settings.env_str("BU0_PHONE", ""),
        blog_url=settings.env_str("BU0_BLOG_URL", "https://www.example.com/insights/blog.html"),
        service_label="services",
        cta_text="Explore our services",
        topic="sustainability",
        bcc=ctx.admin_bcc,
    )


def render_wrapper(
    unit: BusinessUnit,
    *,
    title: str,
    subtitle: str,
    body: str,
    cta_url: str | None = None,
    cta_text: str | None = None,
) -> str:
    """
    Shared table-based HTML layout (email clients ignore most CSS).
    """
    cta = ""
    if cta_url:
        cta = (
            '<div style="padding-top:10px;">'
            f'<a href="{html.escape(cta_url)}" target="_blank" '
            f'style="background-color:{unit.color};color:white;padding:10px 20px;'
            'text-decoration:none;border-radius:4px;display:inline-block;">'
            f"{html.escape(cta_text or unit.cta_text)}</a></div>"
        )

    return (
        "<!DOCTYPE html>\n"
        '<html xmlns="http://www.w3.org/1999/xhtml">\n'
        "<head>\n"
        '  <meta http-equiv="Content-Type" content="text/html; charset=utf-8">\n'
        '  <meta name="viewport" content="width=device-width, initial-scale=1">\n'
        f"  <style>body, table, td {{ font-family: 'Arial', sans-serif !important; }} "
        f"a {{ color: {unit.color}; text-decoration: none; }}</style>\n"
        "</head>\n"
        "<body>\n"
        '  <div style="background:white;color:#333;font-size:14px;">\n'
        '    <table border="0" cellpadding="0" cellspacing="0" width="100%">\n'
        '      <tr><td></td><td width="640">\n'
        '        <table border="0" cellpadding="0" cellspacing="0" style="min-width:100%;background:white;">\n'
        f'          <tr><td style="padding:24px 24px 30px;"><img src="{html.escape(unit.logo)}" width="100" '
        f'alt="{html.escape(unit.name)}"></td></tr>\n'
        f'          <tr><td style="font-size:28px;padding:0 24px;font-weight:bold;color:{unit.color}">'
        f"{html.escape(title)}</td></tr>\n"
        f'          <tr><td style="padding:20px 24px 30px 24px;"><span style="font-weight:600">'
        f"{html.escape(subtitle)}</span></td></tr>\n"
        f'          <tr><td style="padding:0 24px 44px;">{body}{cta}</td></tr>\n'
        '          <tr><td style="padding:10px 25px 25px;font-size:12px;text-align:center;background-color:#F3F3F3;">\n'
        f'            <div style="color:#666;">{html.escape(unit.name)}<br>'
        f'<a href="mailto:{html.escape(unit.email)}" style="color:{unit.color};">{html.escape(unit.email)}</a></div>\n'
        "          </td></tr>\n"
        "        </table>\n"
        "      </td><td></td></tr>\n"
        "    </table>\n"
        "  </div>\n"
        "</body>\n"
        "</html>"
    )


def inquiry_confirmation(row: dict[str, Any], ctx: TemplateContext) -> OutgoingEmail:
    """
    Confirmation sent to whoever submitted a contact form.
    """
    unit = business_unit(row, ctx)
    ref = f"INQ-{row.get('id')}"
    phone_line = ""
    if unit.phone:
        phone_line = (
            " If you have any immediate questions, feel free to call us at "
            f'<a href="tel:{html.escape(unit.phone)}">{html.escape(unit.phone)}</a>.'
        )

    body = (
        f'<p style="margin-top:0">We\'ve received your inquiry and we\'ll get back to you shortly. '
        f"Your interest in our {unit.service_label} is much appreciated.</p>"
        '<p><b style="font-weight:600">Your inquiry details:</b></p>'
        f"<ul><li>Reference Number: {html.escape(ref)}</li>"
        f"<li>Submitted: {ctx.today.strftime('%d/%m/%Y')}</li></ul>"
        '<p><b style="font-weight:600">What happens next?</b></p>'
        f"<p>One of our specialists will review your request and be in touch within 1-2 business days.{phone_line}</p>"
    )
    return OutgoingEmail(
        to=decode_entities(row.get("email")),
        subject=f"Your {unit.name} Inquiry {ref} - We've Received Your Message!",
        html=render_wrapper(
            unit,
            title="We've Got Your Message!",
            subtitle=f"Thanks for reaching out, {decode_entities(row.get('name')) or 'there'}!",
            body=body,
            cta_url=unit.website,
            cta_text=unit.cta_text,
        ),
        sender=unit.sender,
        bcc=unit.bcc,
    )


def subscriber_welcome(row: dict[str, Any], ctx: TemplateContext) -> OutgoingEmail:
    unit = business_unit(row, ctx)
    body = (
        '<p style="margin-top:0;line-height:1.6;">We\'re thrilled to have you join the community! '
        f"Your inbox is now set to receive our weekly digest of industry insights and {unit.topic} tips.</p>"
        f'<p style="line-height:1.6;"><b style="font-weight:600;color:{unit.color};">Our promise to you:</b></p>'
        '<ul style="line-height:1.6;padding-left:20px;">'
        "<li><b>No inbox flooding</b> - Just one weekly digest</li>"
        "<li><b>Quality content only</b> - Curated insights you can actually use</li>"
        "<li><b>Easy opt-out</b> - Leave anytime</li>"
        "</ul>"
        '<p style="line-height:1.6;margin-top:25px;">Your first digest will arrive next week. Until then, '
        f'feel free to explore our <a href="{html.escape(unit.blog_url)}" style="color:{unit.color};'
        'font-weight:bold;">resource center</a>.</p>'
    )
    return OutgoingEmail(
        to=decode_entities(row.get("email")),
        subject=f"Welcome to the {unit.name} community! Your weekly dose of {unit.topic} insights",
        html=render_wrapper(
            unit,
            title="You're In!",
            subtitle=f"Thanks for subscribing to {unit.name} {unit.topic} insights!",
            body=body,
            cta_url=unit.blog_url,
            cta_text="Check out our latest articles",
        ),
        sender=unit.sender,
        bcc=unit.bcc,
    )


def comment_moderation(row: dict[str, Any], ctx: TemplateContext) -> OutgoingEmail:
    """
    Admin notice that a new comment is waiting for approval.
    """
    if not ctx.admin_email:
        raise ValueError("ADMIN_EMAIL is required for comment moderation emails.")

    review = "Please review and approve or reject the comment."
    if ctx.moderation_url:
        review = (
            "Please review and approve or reject the comment in the "
            f'<a href="{html.escape(ctx.moderation_url)}">moderation console</a>.'
        )

    unit = business_unit(row, ctx)
    return OutgoingEmail(
        to=ctx.admin_email,
        subject="New Comment is waiting for your approval",
        html=(
            "<p>Hello<br><br>A new comment has been submitted and is waiting for your approval.<br><br>"
            f"<b>Post:</b> {_esc(ctx.post_title or 'Unknown Post')}<br>"
            f"<b>Author:</b> {_esc(row.get('author_name'))} ({_esc(row.get('author_email'))})<br>"
            f"<b>Comment:</b> {_esc(row.get('content'))}<br><br>"
            f"{review}</p>"
        ),
        sender=unit.sender,
    )


TEMPLATES: dict[str, Callable[[dict[str, Any], TemplateContext], OutgoingEmail]] = {
    INQUIRY_CONFIRMATION: inquiry_confirmation,
    SUBSCRIBER_WELCOME: subscriber_welcome,
    COMMENT_MODERATION: comment_moderation,
}


def render(template: str, row: dict[str, Any], ctx: TemplateContext) -> OutgoingEmail:
    try:
        builder = TEMPLATES[template]
    except KeyError:
        raise ValueError(f"Unknown email template: {template!r}") from None
    return builder(row, ctx)
