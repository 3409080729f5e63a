"""
Пятишаговый мастер отзыва: съёмка -> оценка/ключевые слова -> черновик ->
выбор платформ -> публикация. Каждый шаг открывается только после
заполнения обязательных полей предыдущего.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from errors import ErrorKind, ServiceError

MAX_MEDIA = 5
MAX_KEYWORDS = 5

# начальный набор ключевых слов, по 5 на каждую оценку
DEFAULT_KEYWORDS = {
    1: ["매우 불만족", "서비스 불친절", "음식 맛없음", "위생 상태 불량", "가격 대비 부족"],
    2: ["아쉬운 점 많음", "개선 필요", "보통 이하", "기대 이하", "재방문 의사 없음"],
    3: ["보통 수준", "무난함", "괜찮음", "평범함", "그럭저럭"],
    4: ["맛있음", "친절한 서비스", "깨끗한 환경", "가성비 좋음", "재방문 의사 있음"],
    5: ["완벽함", "최고의 맛", "훌륭한 서비스", "강력 추천", "완벽한 경험"],
}

STEP_NAMES = {
    1: "capture",
    2: "rate",
    3: "generate",
    4: "select_platforms",
    5: "publish",
}

# (поле, шаг, который оно открывает, сообщение)
GATES = [
    ("media", 2, "사진이나 영상을 먼저 추가해주세요."),
    ("rating", 3, "별점을 선택해주세요."),
    ("keywords", 3, "키워드를 하나 이상 선택해주세요."),
    ("draft", 4, "리뷰 초안을 먼저 생성해주세요."),
    ("platforms", 5, "게시할 플랫폼을 선택해주세요."),
]


@dataclass
class KeywordOption:
    id: int
    rating: int
    keyword: str


@dataclass
class ReviewWizard:
    keyword_pool: List[KeywordOption] = field(default_factory=list)
    media: List[str] = field(default_factory=list)
    rating: Optional[int] = None
    keyword_ids: List[int] = field(default_factory=list)
    draft: str = ""
    platform_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_review(cls, review, keyword_pool: List[KeywordOption]) -> "ReviewWizard":
        """Восстанавливает состояние мастера по уже сохранённому отзыву."""
        by_text = {k.keyword: k.id for k in keyword_pool if k.rating == review.rating}
        return cls(
            keyword_pool=keyword_pool,
            media=[m.file_path for m in review.media],
            rating=review.rating,
            keyword_ids=[by_text[k] for k in (review.keywords or []) if k in by_text],
            draft=review.final_content or "",
        )

    def add_media(self, path: str) -> None:
        if len(self.media) >= MAX_MEDIA:
            raise ServiceError(ErrorKind.INVALID_INPUT, f"파일은 최대 {MAX_MEDIA}개까지 첨부할 수 있습니다.")
        self.media.append(path)

    def set_rating(self, rating: int) -> None:
        if rating not in range(1, 6):
            raise ServiceError(ErrorKind.INVALID_INPUT, "별점은 1에서 5 사이여야 합니다.")
        if rating != self.rating:
            # у другой оценки свой набор ключевых слов
            self.keyword_ids = []
        self.rating = rating

    def available_keywords(self) -> List[KeywordOption]:
        if self.rating is None:
            return []
        return [k for k in self.keyword_pool if k.rating == self.rating]

    def toggle_keyword(self, keyword_id: int) -> None:
        if keyword_id in self.keyword_ids:
            self.keyword_ids.remove(keyword_id)
            return

        if keyword_id not in {k.id for k in self.available_keywords()}:
            raise ServiceError(ErrorKind.INVALID_INPUT, "선택한 별점에 해당하지 않는 키워드입니다.")
        if len(self.keyword_ids) >= MAX_KEYWORDS:
            raise ServiceError(ErrorKind.INVALID_INPUT, f"키워드는 최대 {MAX_KEYWORDS}개까지 선택할 수 있습니다.")
        self.keyword_ids.append(keyword_id)

    def selected_keywords(self) -> List[str]:
        by_id = {k.id: k.keyword for k in self.available_keywords()}
        return [by_id[i] for i in self.keyword_ids if i in by_id]

    def set_draft(self, text: str) -> None:
        self.draft = text or ""

    def select_platforms(self, platform_ids: List[str]) -> None:
        # порядок сохраняем, дубликаты убираем
        self.platform_ids = list(dict.fromkeys(platform_ids))

    def _filled(self, name: str) -> bool:
        if name == "rating":
            return self.rating is not None
        if name == "draft":
            return bool(self.draft.strip())
        if name == "keywords":
            return bool(self.keyword_ids)
        if name == "media":
            return bool(self.media)
        return bool(self.platform_ids)

    def missing_for(self, step: int) -> List[str]:
        """Сообщения о полях, без которых нельзя перейти на шаг step."""
        return [message for name, opens, message in GATES if opens <= step and not self._filled(name)]

    def current_step(self) -> int:
        for name, opens, _ in GATES:
            if not self._filled(name):
                return opens - 1
        return 5

    def require(self, step: int) -> None:
        missing = self.missing_for(step)
        if missing:
            raise ServiceError(ErrorKind.MISSING_FIELD, missing[0])
