import logging
import os
import smtplib
import time
from datetime import datetime
from email.header import Header
from email.mime.text import MIMEText

from dotenv import load_dotenv

load_dotenv()

SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM = os.getenv("SMTP_FROM", SMTP_USERNAME or "")

logger = logging.getLogger(__name__)


def build_review_email(branch_name: str, rating: int, content: str, created_at: datetime) -> MIMEText:
    subject = f"새로운 리뷰가 등록되었습니다 - {branch_name}"
    body = (
        "새로운 리뷰가 등록되었습니다.\n\n"
        f"지점: {branch_name}\n"
        f"별점: {rating}점\n"
        f"내용: {content}\n"
        f"작성일: {created_at.strftime('%Y. %m. %d.')}"
    )

    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = Header(subject, "utf-8")
    msg["From"] = SMTP_FROM
    return msg


def send_review_notification(
    to_email: str,
    branch_name: str,
    rating: int,
    content: str,
    created_at: datetime,
    retries: int = 3,
    delay: int = 3,
) -> bool:
    if not SMTP_USERNAME or not SMTP_PASSWORD:
        logger.info("SMTP is not configured, skipping notification to %s", to_email)
        return False

    msg = build_review_email(branch_name, rating, content, created_at)
    msg["To"] = to_email

    for attempt in range(retries):
        try:
            with smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT) as server:
                server.login(SMTP_USERNAME, SMTP_PASSWORD)
                server.sendmail(SMTP_FROM, [to_email], msg.as_string())
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("[EMAIL] send failed (attempt %s): %s", attempt + 1, e)
            time.sleep(delay)
    return False
