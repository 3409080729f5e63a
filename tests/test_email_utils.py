import smtplib
from datetime import datetime
from unittest.mock import MagicMock, patch

import email_utils


def test_build_review_email():
    msg = email_utils.build_review_email("Cafe X", 5, "최고예요", datetime(2024, 5, 1))

    assert str(msg["Subject"]) == "새로운 리뷰가 등록되었습니다 - Cafe X"
    body = msg.get_payload(decode=True).decode("utf-8")
    assert "별점: 5점" in body
    assert "작성일: 2024. 05. 01." in body


def test_skips_without_smtp_config():
    with patch.object(email_utils, "SMTP_USERNAME", None), patch("email_utils.smtplib.SMTP_SSL") as smtp:
        assert email_utils.send_review_notification("a@example.com", "Cafe X", 5, "x", datetime.utcnow()) is False
    smtp.assert_not_called()


def test_sends_notification():
    server = MagicMock()
    smtp = MagicMock()
    smtp.return_value.__enter__.return_value = server

    with patch.object(email_utils, "SMTP_USERNAME", "bot@example.com"), \
            patch.object(email_utils, "SMTP_PASSWORD", "secret"), \
            patch("email_utils.smtplib.SMTP_SSL", smtp):
        ok = email_utils.send_review_notification("a@example.com", "Cafe X", 5, "x", datetime.utcnow())

    assert ok is True
    server.login.assert_called_once_with("bot@example.com", "secret")
    assert server.sendmail.call_args.args[1] == ["a@example.com"]


def test_retries_then_gives_up():
    smtp = MagicMock(side_effect=smtplib.SMTPException("boom"))

    with patch.object(email_utils, "SMTP_USERNAME", "bot@example.com"), \
            patch.object(email_utils, "SMTP_PASSWORD", "secret"), \
            patch("email_utils.smtplib.SMTP_SSL", smtp), \
            patch("email_utils.time.sleep") as sleep:
        ok = email_utils.send_review_notification("a@example.com", "Cafe X", 1, "x", datetime.utcnow(), retries=2)

    assert ok is False
    assert smtp.call_count == 2
    assert sleep.call_count == 2
