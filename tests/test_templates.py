from datetime import date

import pytest

from notifications import templates
from notifications.templates import TemplateContext


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("BU0_NAME", "BU1_NAME", "BU0_FROM", "BU1_FROM", "BU0_PHONE", "BU1_PHONE"):
        monkeypatch.delenv(name, raising=False)


def ctx(**kwargs):
    values = {"today": date(2024, 3, 1), "admin_email": "admin@example.com", "admin_bcc": ("audit@example.com",)}
    values.update(kwargs)
    return TemplateContext(**values)


def test_inquiry_confirmation_consulting_variant():
    email = templates.render(
        templates.INQUIRY_CONFIRMATION,
        {"id": 42, "name": "Ada", "email": "ada@example.com", "BU": 0},
        ctx(),
    )

    assert email.subject == "Your Consulting Inquiry INQ-42 - We've Received Your Message!"
    assert email.to == "ada@example.com"
    assert email.bcc == ("audit@example.com",)
    assert "01/03/2024" in email.html
    assert "Thanks for reaching out, Ada!" in email.html


def test_inquiry_confirmation_solutions_variant():
    email = templates.render(
        templates.INQUIRY_CONFIRMATION,
        {"id": 7, "name": "Ada", "email": "ada@example.com", "BU": "1"},
        ctx(),
    )

    assert email.subject.startswith("Your Solutions Inquiry INQ-7")
    assert email.bcc == ("admin@example.com",)
    assert email.sender == "info@solutions.example.com"


def test_sender_override_wins():
    email = templates.render(
        templates.SUBSCRIBER_WELCOME,
        {"id": 1, "email": "x@example.com"},
        ctx(sender_override="news@example.com"),
    )
    assert email.sender == "news@example.com"


def test_subscriber_welcome_topic_follows_business_unit():
    consulting = templates.render(templates.SUBSCRIBER_WELCOME, {"id": 1, "email": "x@example.com"}, ctx())
    solutions = templates.render(templates.SUBSCRIBER_WELCOME, {"id": 1, "email": "x@example.com", "BU": 1}, ctx())

    assert "sustainability" in consulting.subject
    assert "technology" in solutions.subject


def test_entity_encoded_fields_are_decoded_then_escaped():
    email = templates.render(
        templates.COMMENT_MODERATION,
        {"id": 1, "author_name": "O&#39;Brien", "author_email": "ob@example.com", "content": "a &lt;b&gt; c"},
        ctx(post_title="Tom &amp; Jerry"),
    )

    assert "O&#x27;Brien" in email.html
    assert "a &lt;b&gt; c" in email.html
    assert "Tom &amp; Jerry" in email.html
    assert "&amp;amp;" not in email.html


def test_comment_moderation_defaults_post_title():
    email = templates.render(templates.COMMENT_MODERATION, {"id": 1}, ctx())
    assert "Unknown Post" in email.html
    assert email.to == "admin@example.com"


def test_comment_moderation_requires_admin_email():
    with pytest.raises(ValueError, match="ADMIN_EMAIL"):
        templates.render(templates.COMMENT_MODERATION, {"id": 1}, ctx(admin_email=None))


def test_comment_moderation_links_console_from_env(monkeypatch):
    monkeypatch.setenv("MODERATION_URL", "https://admin.example.com/comments?state=pending&x=1")
    monkeypatch.setenv("ADMIN_EMAIL", "admin@example.com")

    email = templates.render(templates.COMMENT_MODERATION, {"id": 1}, templates.context_from_env(today=date(2024, 3, 1)))

    assert '<a href="https://admin.example.com/comments?state=pending&amp;x=1">moderation console</a>' in email.html
    assert "moderation console" not in templates.render(templates.COMMENT_MODERATION, {"id": 1}, ctx()).html


def test_unknown_template():
    with pytest.raises(ValueError, match="Unknown email template"):
        templates.render("nope", {"id": 1}, ctx())


def test_decode_entities_handles_none():
    assert templates.decode_entities(None) == ""
    assert templates.decode_entities("caf&eacute;") == "café"
