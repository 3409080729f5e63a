"""
Реестр платформ для распространения отзывов.

Каждая платформа описана данными (шаблон подписи, способ шаринга, инструкции,
награда), поэтому новую платформу можно добавить JSON-файлом без изменения кода.
"""

import enum
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from dotenv import load_dotenv

from errors import ErrorKind, ServiceError

load_dotenv()

PLATFORMS_FILE = os.getenv("PLATFORMS_FILE")
APP_URL = os.getenv("APP_URL", "http://localhost:8000")

# Сеул, если у филиала нет координат
DEFAULT_LATITUDE = 37.5665
DEFAULT_LONGITUDE = 126.9780

CLIPBOARD_FALLBACK_MESSAGE = "캡션이 클립보드에 복사되었습니다. 앱에서 붙여넣기하세요."

logger = logging.getLogger(__name__)


class ShareMethod(str, enum.Enum):
    DEEPLINK = "deeplink"
    WEB_SHARE = "web-share"
    COPY_ONLY = "copy-only"


@dataclass
class PlatformConfig:
    id: str
    name: str
    share_method: ShareMethod
    caption_template: str
    icon: str = ""
    description: str = ""
    instructions: List[str] = field(default_factory=list)
    deeplink_template: Optional[str] = None
    fallback_url_template: Optional[str] = None
    default_reward: int = 0
    caption_brief: str = ""
    caption_requirements: List[str] = field(default_factory=list)
    ideal_length: Optional[Tuple[int, int]] = None
    ideal_hashtags: Optional[Tuple[int, int]] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PlatformConfig":
        data = dict(data)
        data["share_method"] = ShareMethod(data["share_method"])
        for key in ("ideal_length", "ideal_hashtags"):
            if data.get(key) is not None:
                data[key] = tuple(data[key])
        return cls(**data)

    def render_caption(self, content: str, rating: int, branch_name: str) -> str:
        return self.caption_template.format(
            content=content or "",
            rating=rating,
            stars="⭐" * int(rating),
            branch=branch_name,
            branch_tag="".join(branch_name.split()),
        )

    def _url_params(self, branch: dict, app_url: str) -> dict:
        lat = branch.get("latitude") or DEFAULT_LATITUDE
        lng = branch.get("longitude") or DEFAULT_LONGITUDE
        return {
            "lat": lat,
            "lng": lng,
            "name": quote(branch.get("name") or "", safe=""),
            "appname": quote(app_url, safe=""),
        }

    def deeplink_url(self, branch: dict, app_url: str = APP_URL) -> Optional[str]:
        if not self.deeplink_template:
            return None
        return self.deeplink_template.format(**self._url_params(branch, app_url))

    def fallback_url(self, branch: dict, app_url: str = APP_URL) -> Optional[str]:
        if not self.fallback_url_template:
            return None
        return self.fallback_url_template.format(**self._url_params(branch, app_url))


@dataclass
class ShareAction:
    platform_id: str
    method: ShareMethod
    caption: str
    title: str
    url: Optional[str] = None             # deeplink, который открывается в новом окне
    fallback_url: Optional[str] = None    # веб-версия, если приложение не установлено
    copy_first: bool = False
    fallback_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "platform_id": self.platform_id,
            "method": self.method.value,
            "caption": self.caption,
            "title": self.title,
            "url": self.url,
            "fallback_url": self.fallback_url,
            "copy_first": self.copy_first,
            "fallback_message": self.fallback_message,
        }


DEFAULT_PLATFORMS = [
    {
        "id": "naver",
        "name": "네이버 플레이스",
        "icon": "🟢",
        "description": "방문자리뷰로 더 잘 노출돼요",
        "instructions": [
            "캡션을 복사하세요",
            "네이버 리뷰 쓰기를 클릭하세요",
            "사진을 선택하고 캡션을 붙여넣으세요",
            "영수증 사진을 첨부하면 더 잘 노출됩니다",
        ],
        "caption_template": "📍 {branch}\n\n{stars} {rating}/5점\n\n{content}\n\n#{branch_tag} #리뷰 #방문후기",
        "share_method": "deeplink",
        "deeplink_template": "nmap://place?lat={lat}&lng={lng}&name={name}&appname={appname}",
        "fallback_url_template": "https://map.naver.com/v5/search/{name}",
        "default_reward": 100,
        "caption_brief": "네이버 플레이스 방문자리뷰용 캡션을 생성해주세요.",
        "caption_requirements": [
            "200-400자 내외",
            "방문 인증을 암시하는 표현 포함",
            "메뉴명, 시간대, 동행자 정보 포함",
            "과장하지 않고 솔직한 톤",
            "영수증 첨부를 암시하는 문구 포함",
        ],
        "ideal_length": [200, 400],
    },
    {
        "id": "instagram",
        "name": "인스타그램",
        "icon": "📷",
        "description": "피드/릴스/스토리에 게시",
        "instructions": [
            "캡션을 복사하세요",
            "인스타그램으로 공유를 클릭하세요",
            "앱에서 붙여넣기하세요",
            "해시태그 6-10개를 추가하세요",
        ],
        "caption_template": (
            "{content}\n\n📍 {branch} {stars}\n\n"
            "#{branch_tag} #맛집 #리뷰 #추천 #방문후기 #데이트 #친구모임 #맛스타그램"
        ),
        "share_method": "web-share",
        "default_reward": 150,
        "caption_brief": "인스타그램용 캡션을 생성해주세요.",
        "caption_requirements": [
            "80-140자 + 해시태그 6-15개",
            "트렌디하고 감성적인 톤",
            "지역, 메뉴, 분위기 해시태그 조합",
            "스토리텔링 요소 포함",
            "인터랙션을 유도하는 질문 포함",
        ],
        "ideal_length": [80, 140],
        "ideal_hashtags": [6, 15],
    },
    {
        "id": "xiaohongshu",
        "name": "샤오홍슈",
        "icon": "📖",
        "description": "중국어 스토리형 리뷰",
        "instructions": [
            "중국어 캡션을 복사하세요",
            "샤오홍슈로 공유를 클릭하세요",
            "앱에서 붙여넣기하세요",
            "장소 태그를 꼭 선택하세요",
        ],
        "caption_template": (
            "📍 {branch}\n\n今天和朋友一起去了{branch}，环境真的很不错！\n\n"
            "{stars} 评分：{rating}/5\n\n{content}\n\n#{branch_tag} #探店 #美食 #推荐 #生活记录"
        ),
        "share_method": "web-share",
        "default_reward": 120,
        "caption_brief": "샤오홍슈용 중국어 캡션을 생성해주세요.",
        "caption_requirements": [
            "400-800자 스토리형",
            "도입-경험-한줄평 구조",
            "작은 아쉬움 1개 포함 (신뢰도 향상)",
            "현지 어투와 유행어 사용",
            "장소 태그 암시",
        ],
        "ideal_length": [400, 800],
    },
    {
        "id": "kakao",
        "name": "카카오톡",
        "icon": "💬",
        "description": "친구들과 공유하기",
        "instructions": [
            "캡션을 복사하세요",
            "카카오톡으로 공유를 클릭하세요",
            "친구에게 전송하세요",
            "카카오톡 링크도 함께 공유하세요",
        ],
        "caption_template": "📍 {branch} 방문 후기\n\n{stars} {rating}/5점\n\n{content}\n\n#{branch_tag} #리뷰 #추천",
        "share_method": "web-share",
        "default_reward": 50,
        "caption_brief": "카카오톡 공유용 캡션을 생성해주세요.",
        "caption_requirements": [
            "100-200자 내외",
            "친구에게 말하듯 편안한 톤",
            "가게 위치를 알 수 있는 정보 포함",
        ],
    },
    {
        "id": "facebook",
        "name": "페이스북",
        "icon": "📘",
        "description": "페이스북 포스트로 공유",
        "instructions": [
            "캡션을 복사하세요",
            "페이스북으로 공유를 클릭하세요",
            "포스트에 붙여넣기하세요",
            "위치 태그를 추가하세요",
        ],
        "caption_template": "📍 {branch}\n\n{stars} {rating}/5점\n\n{content}\n\n#{branch_tag} #리뷰 #추천 #방문후기",
        "share_method": "web-share",
        "default_reward": 80,
        "caption_brief": "페이스북 포스트용 캡션을 생성해주세요.",
        "caption_requirements": [
            "150-300자 내외",
            "경험을 자세히 전하는 톤",
            "위치 태그를 암시하는 문구 포함",
        ],
    },
]


class PlatformRegistry:
    def __init__(self, configs: List[PlatformConfig]):
        self._configs: Dict[str, PlatformConfig] = {}
        for config in configs:
            self._configs[config.id] = config

    @classmethod
    def load(cls, path: Optional[str] = None) -> "PlatformRegistry":
        """
        Встроенные платформы + JSON-файл со списком дополнительных/переопределённых.
        Записи из файла с тем же id заменяют встроенные целиком.
        """
        configs = [PlatformConfig.from_dict(item) for item in DEFAULT_PLATFORMS]
        registry = cls(configs)

        if path:
            with open(path, "r", encoding="utf-8") as f:
                extra = json.load(f)
            for item in extra:
                registry.register(PlatformConfig.from_dict(item))
            logger.info("Loaded %d platform(s) from %s", len(extra), path)

        return registry

    def register(self, config: PlatformConfig) -> None:
        self._configs[config.id] = config

    def get(self, platform_id: str) -> PlatformConfig:
        config = self._configs.get(platform_id)
        if config is None:
            raise ServiceError(ErrorKind.INVALID_INPUT, "지원하지 않는 플랫폼입니다.")
        return config

    def __contains__(self, platform_id: str) -> bool:
        return platform_id in self._configs

    def all(self) -> List[PlatformConfig]:
        return list(self._configs.values())

    def ids(self) -> List[str]:
        return list(self._configs.keys())

    def share_action(
        self,
        platform_id: str,
        caption: str,
        branch: dict,
        app_url: str = APP_URL,
    ) -> ShareAction:
        """
        Выбор способа распространения только по share_method платформы.
        Сам пост пользователь публикует вручную, мы лишь готовим данные для клиента.
        """
        config = self.get(platform_id)
        title = f"{branch.get('name', '')} 리뷰"

        if config.share_method == ShareMethod.DEEPLINK:
            return ShareAction(
                platform_id=platform_id,
                method=ShareMethod.DEEPLINK,
                caption=caption,
                title=title,
                url=config.deeplink_url(branch, app_url),
                fallback_url=config.fallback_url(branch, app_url),
                copy_first=True,
            )

        if config.share_method == ShareMethod.WEB_SHARE:
            # если Web Share API недоступен, клиент копирует подпись и показывает сообщение
            return ShareAction(
                platform_id=platform_id,
                method=ShareMethod.WEB_SHARE,
                caption=caption,
                title=title,
                url=app_url,
                fallback_message=CLIPBOARD_FALLBACK_MESSAGE,
            )

        return ShareAction(
            platform_id=platform_id,
            method=ShareMethod.COPY_ONLY,
            caption=caption,
            title=title,
            copy_first=True,
        )


registry = PlatformRegistry.load(PLATFORMS_FILE)
