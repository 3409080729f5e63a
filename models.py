import os
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base

# Время в БД хранится как naive UTC (datetime.utcnow), дни и часы считаем в этой зоне
APP_TIMEZONE = ZoneInfo(os.getenv("APP_TIMEZONE", "Asia/Seoul"))


def to_local(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(APP_TIMEZONE)


class Agency(Base):
    __tablename__ = "agencies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    email = Column(String, nullable=True)            # куда отправлять уведомления о новых отзывах
    created_at = Column(DateTime, default=datetime.utcnow)

    branches = relationship("Branch", back_populates="agency")


class Branch(Base):
    __tablename__ = "branches"

    id = Column(Integer, primary_key=True, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    industry = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    qr_path = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    agency = relationship("Agency", back_populates="branches")
    reviews = relationship("Review", back_populates="branch")


class ReviewKeyword(Base):
    __tablename__ = "review_keywords"

    id = Column(Integer, primary_key=True, index=True)
    rating = Column(Integer, nullable=False, index=True)   # у каждой оценки 1-5 свой набор
    keyword = Column(String, nullable=False)


class Platform(Base):
    __tablename__ = "platforms"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False)     # naver / instagram / ...
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    default_reward = Column(Integer, default=0)


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False)
    user_id = Column(String, nullable=True, index=True)    # None для анонимных отзывов
    reviewer_name = Column(String, nullable=True)
    reviewer_email = Column(String, nullable=True)
    rating = Column(Integer, nullable=False)
    selected_keyword_id = Column(Integer, ForeignKey("review_keywords.id"), nullable=True)
    keywords = Column(JSON, default=list)
    ai_content = Column(Text, nullable=True)               # как сгенерировала модель
    final_content = Column(Text, default="")               # после редактирования
    sentiment = Column(String, nullable=True)              # positive/neutral/negative
    status = Column(String, default="draft")               # draft/pending/published/failed
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    branch = relationship("Branch", back_populates="reviews")
    media = relationship("ReviewMedia", back_populates="review")
    trackers = relationship("PostingTracker", back_populates="review")


class ReviewMedia(Base):
    __tablename__ = "review_media"

    id = Column(Integer, primary_key=True, index=True)
    review_id = Column(Integer, ForeignKey("reviews.id"), nullable=False)
    file_path = Column(String, nullable=False)
    media_type = Column(String, default="image")           # image/video
    created_at = Column(DateTime, default=datetime.utcnow)

    review = relationship("Review", back_populates="media")


class PostingTracker(Base):
    __tablename__ = "posting_tracker"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    review_id = Column(Integer, ForeignKey("reviews.id"), nullable=False)
    platform_id = Column(String, nullable=False)           # код платформы, не меняется
    status = Column(String, default="pending")             # pending/shared/posted/failed
    shared_at = Column(DateTime, nullable=True)
    posted_at = Column(DateTime, nullable=True)
    engagement = Column(JSON, nullable=True)               # likes/comments/shares/views
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    review = relationship("Review", back_populates="trackers")


class UserPoints(Base):
    __tablename__ = "user_points"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_user_points_idempotency"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    points = Column(Integer, nullable=False)
    source = Column(String, nullable=False)                # например instagram_share
    description = Column(String, nullable=True)
    review_id = Column(Integer, ForeignKey("reviews.id"), nullable=True)
    idempotency_key = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class CaptionHistory(Base):
    __tablename__ = "user_caption_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    platform_id = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    review_id = Column(Integer, ForeignKey("reviews.id"), nullable=True)
    rating = Column(Integer, nullable=True)
    keywords = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
