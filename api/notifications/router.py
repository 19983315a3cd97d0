"""
Ad-hoc email endpoint.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from core.mailer import Mailer, MailerError, OutgoingEmail, smtp_settings_from_env

from . import schemas

router = APIRouter()

logger = logging.getLogger(__name__)


@router.post("/api/send-email")
async def send_email(request: schemas.SendEmailRequest) -> dict:
    smtp = smtp_settings_from_env()
    if smtp is None:
        raise HTTPException(status_code=503, detail="Email service not configured. Set SMTP env vars.")
    if not request.html and not request.text:
        raise HTTPException(status_code=400, detail="Provide html or text content.")

    try:
        message_id = await Mailer(smtp).send(
            OutgoingEmail(to=request.to, subject=request.subject, html=request.html, text=request.text)
        )
    except MailerError as exc:
        logger.warning("send_email_failed to=%s error=%s", request.to, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    logger.info("send_email_ok to=%s message_id=%s", request.to, message_id)
    return {"success": True, "messageId": message_id}
