from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class AgencyCreate(BaseModel):
    name: str
    description: Optional[str] = None
    email: Optional[EmailStr] = None


class AgencyOut(BaseModel):
    id: int
    name: str
    description: Optional[str]
    email: Optional[str]

    class Config:
        from_attributes = True


class BranchCreate(BaseModel):
    agency_id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class BranchOut(BaseModel):
    id: int
    agency_id: int
    name: str
    address: Optional[str]
    phone: Optional[str]
    description: Optional[str]
    industry: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    qr_path: Optional[str]
    agency: Optional[AgencyOut] = None

    class Config:
        from_attributes = True


class KeywordIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    keyword: str


class KeywordUpdate(BaseModel):
    keyword: str


class KeywordOut(BaseModel):
    id: int
    rating: int
    keyword: str

    class Config:
        from_attributes = True


class BranchInfo(BaseModel):
    name: str
    description: Optional[str] = None
    industry: Optional[str] = None
    address: Optional[str] = None


class GenerateReviewIn(BaseModel):
    # поля необязательные: пустой запрос должен получить 400, а не 422
    rating: Optional[int] = Field(None, ge=1, le=5)
    keywords: List[str] = []
    branch_info: Optional[BranchInfo] = None
    images: List[str] = []    # base64 или data URL


class ReviewCreate(BaseModel):
    branch_id: int
    user_id: Optional[str] = None
    reviewer_name: Optional[str] = None
    reviewer_email: Optional[EmailStr] = None
    rating: int
    keyword_ids: List[int]
    media: List[str] = []     # пути к уже загруженным файлам


class ReviewOut(BaseModel):
    id: int
    branch_id: int
    user_id: Optional[str]
    reviewer_name: Optional[str]
    rating: int
    selected_keyword_id: Optional[int]
    keywords: List[str]
    ai_content: Optional[str]
    final_content: str
    sentiment: Optional[str]
    status: str
    published_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class DraftOut(BaseModel):
    review: ReviewOut
    fallback: bool


class ReviewContentIn(BaseModel):
    text: str   # окончательный текст, после редактирования


class PublishIn(BaseModel):
    review_id: int
    platform_ids: List[str]
    captions: Dict[str, str] = {}    # персональные подписи по платформам, если уже есть


class ShareActionOut(BaseModel):
    tracker_id: int
    platform_id: str
    method: str
    caption: str
    title: str
    url: Optional[str]
    fallback_url: Optional[str]
    copy_first: bool
    fallback_message: Optional[str]
    instructions: List[str]


class PublishOut(BaseModel):
    review: ReviewOut
    shares: List[ShareActionOut]
    points_awarded: int


class CaptionCopyIn(BaseModel):
    platform_id: str
    caption: Optional[str] = None


class CaptionCopyOut(BaseModel):
    caption: str
    points_awarded: int


class PersonalizedCaptionIn(BaseModel):
    review: Optional[dict] = None     # id, rating, keywords, content
    branch: Optional[dict] = None     # name, address, category
    platform_id: Optional[str] = None
    user_id: Optional[str] = None
    user_preferences: Dict[str, str] = {}
    previous_captions: List[str] = []


class SentimentIn(BaseModel):
    text: Optional[str] = None
    review_id: Optional[int] = None


class Engagement(BaseModel):
    likes: Optional[int] = None
    comments: Optional[int] = None
    shares: Optional[int] = None
    views: Optional[int] = None


class TrackerReportIn(BaseModel):
    success: bool
    engagement: Optional[Engagement] = None


class TrackerOut(BaseModel):
    id: int
    user_id: Optional[str]
    review_id: int
    platform_id: str
    status: str
    shared_at: Optional[datetime]
    posted_at: Optional[datetime]
    engagement: Optional[dict]
    created_at: datetime

    class Config:
        from_attributes = True


class TrackerActionOut(BaseModel):
    tracker: TrackerOut
    points_awarded: int


class PostingStatsOut(BaseModel):
    total_shares: int
    total_posts: int
    success_rate: float
    avg_engagement: float
    platform_breakdown: Dict[str, int]
    recent_activity: List[TrackerOut]


class PointTransactionOut(BaseModel):
    id: int
    points: int
    source: str
    description: Optional[str]
    review_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class PointsOut(BaseModel):
    user_id: str
    balance: int
    transactions: List[PointTransactionOut]


class StreakBonusIn(BaseModel):
    base_points: int = Field(..., ge=0)
