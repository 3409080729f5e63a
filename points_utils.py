import logging
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import ErrorKind, ServiceError
from models import UserPoints

logger = logging.getLogger(__name__)

# фиксированные награды за шаги; за публикацию платим default_reward платформы
REWARD_POINTS = {
    "review_creation": 50,
    "caption_copy": 10,
    "share": 20,
}

ACTION_DESCRIPTIONS = {
    "review_creation": "리뷰 작성 포인트",
    "caption_copy": "캡션 복사 포인트",
    "share": "공유 포인트",
    "posting": "플랫폼 게시 포인트",
}


def action_source(action: str, platform_id: Optional[str] = None) -> str:
    return f"{platform_id}_{action}" if platform_id else action


def award_points(
    db: Session,
    user_id: str,
    points: int,
    source: str,
    description: Optional[str] = None,
    review_id: Optional[int] = None,
    idempotency_key: Optional[str] = None,
) -> Tuple[UserPoints, bool]:
    """
    Добавляет строку в журнал баллов. Возвращает (row, created).

    Без idempotency_key вставка безусловная. С ключом повторный запрос
    возвращает уже существующую строку и ничего не начисляет.
    """
    if not user_id:
        raise ServiceError(ErrorKind.MISSING_FIELD, "포인트를 받을 사용자가 없습니다.")

    if idempotency_key:
        existing = (
            db.query(UserPoints)
            .filter(UserPoints.user_id == user_id, UserPoints.idempotency_key == idempotency_key)
            .first()
        )
        if existing:
            logger.info("Points already awarded for %s (%s)", user_id, idempotency_key)
            return existing, False

    row = UserPoints(
        user_id=user_id,
        points=points,
        source=source,
        description=description,
        review_id=review_id,
        idempotency_key=idempotency_key,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # параллельный запрос успел вставить ту же запись
        db.rollback()
        existing = (
            db.query(UserPoints)
            .filter(UserPoints.user_id == user_id, UserPoints.idempotency_key == idempotency_key)
            .first()
        )
        if existing is None:
            raise
        return existing, False

    db.refresh(row)
    logger.info("Awarded %s points to %s (%s)", points, user_id, source)
    return row, True


def award_action(
    db: Session,
    user_id: str,
    action: str,
    platform_id: Optional[str] = None,
    review_id: Optional[int] = None,
    points: Optional[int] = None,
    idempotency_key: Optional[str] = None,
) -> Tuple[UserPoints, bool]:
    if points is None:
        if action not in REWARD_POINTS:
            raise ServiceError(ErrorKind.INVALID_INPUT, f"알 수 없는 포인트 유형입니다: {action}")
        points = REWARD_POINTS[action]

    description = ACTION_DESCRIPTIONS.get(action, action)
    if platform_id:
        description = f"{platform_id} {description}"

    return award_points(
        db,
        user_id=user_id,
        points=points,
        source=action_source(action, platform_id),
        description=description,
        review_id=review_id,
        idempotency_key=idempotency_key,
    )


def get_balance(db: Session, user_id: str) -> int:
    total = db.query(func.coalesce(func.sum(UserPoints.points), 0)).filter(
        UserPoints.user_id == user_id
    ).scalar()
    return int(total or 0)


def list_transactions(db: Session, user_id: str, limit: int = 50) -> List[UserPoints]:
    return (
        db.query(UserPoints)
        .filter(UserPoints.user_id == user_id)
        .order_by(UserPoints.created_at.desc(), UserPoints.id.desc())
        .limit(limit)
        .all()
    )
