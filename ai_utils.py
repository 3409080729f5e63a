import json
import logging
import os
import re
from typing import List, Optional, Tuple

import requests
from dotenv import load_dotenv

from errors import ErrorKind, ServiceError

load_dotenv()

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_API_URL = os.getenv(
    "OPENAI_API_URL",
    "https://api.openai.com/v1/chat/completions",
)

# ⚠️ Модель можно сменить в .env, например на gpt-4o
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.7"))
OPENAI_TIMEOUT = int(os.getenv("OPENAI_TIMEOUT", "30"))

# 🔹 Системный промпт для персональных подписей
CAPTION_SYSTEM_PROMPT = os.getenv(
    "OPENAI_CAPTION_SYSTEM_PROMPT",
    "당신은 소셜 미디어 전문가이자 개인화된 콘텐츠 생성자입니다. "
    "사용자의 과거 행동 패턴과 선호도를 분석하여 최적화된 캡션을 생성합니다.",
)

# 🔹 Промпт для ОЦЕНКИ ТОНАЛЬНОСТИ
SENTIMENT_PROMPT = os.getenv(
    "OPENAI_SENTIMENT_PROMPT",
    "다음 리뷰의 감정을 분석해주세요.\n"
    "- positive: 칭찬, 만족, 추천 의사\n"
    "- neutral: 특별한 불만이나 감탄이 없는 설명\n"
    "- negative: 불만, 불친절, 재방문 의사 없음\n"
    "심각한 불만이 있으면 긍정적인 표현이 섞여 있어도 negative를 선택하세요.\n",
)

TONE_BY_RATING = {
    1: "매우 불만족스러운",
    2: "불만족스러운",
    3: "보통인",
    4: "만족스러운",
    5: "매우 만족스러운",
}

logger = logging.getLogger(__name__)


def _auth_headers() -> dict:
    if not OPENAI_API_KEY:
        raise ServiceError(ErrorKind.LLM, "OpenAI API 키가 설정되지 않았습니다.")
    return {"Authorization": f"Bearer {OPENAI_API_KEY}"}


def chat_completion(
    system_prompt: str,
    user_content,
    max_tokens: int = 300,
    temperature: Optional[float] = None,
) -> Tuple[str, Optional[dict]]:
    """
    Один вызов chat/completions: system + user сообщение, без стриминга.
    Возвращает (text, usage). Любая ошибка сети/API превращается в ServiceError(LLM).
    """
    headers = {"Content-Type": "application/json"}
    headers.update(_auth_headers())

    body = {
        "model": OPENAI_MODEL,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ],
        "max_tokens": max_tokens,
        "temperature": OPENAI_TEMPERATURE if temperature is None else temperature,
    }

    try:
        response = requests.post(
            OPENAI_API_URL, headers=headers, json=body, timeout=OPENAI_TIMEOUT
        )
    except requests.RequestException as e:
        logger.error("OpenAI request error: %s", e)
        raise ServiceError(ErrorKind.LLM, "AI 서버에 연결할 수 없습니다.") from e

    if response.status_code != 200:
        logger.error("OpenAI error (status=%s): %s", response.status_code, response.text)
        raise ServiceError(
            ErrorKind.LLM, f"AI 요청이 실패했습니다 (status {response.status_code})."
        )

    try:
        payload = response.json()
        text = payload["choices"][0]["message"]["content"] or ""
    except (ValueError, KeyError, IndexError, TypeError) as e:
        logger.warning("Unexpected OpenAI response format: %s (error: %s)", response.text, e)
        raise ServiceError(ErrorKind.LLM, "AI 응답 형식이 올바르지 않습니다.") from e

    return text.strip(), payload.get("usage")


def build_review_prompt(rating: int, keywords: List[str], branch_info: dict, image_count: int = 0) -> str:
    """
    Системный промпт для черновика отзыва: тон по оценке, данные филиала, ключевые слова.
    """
    image_part = ""
    if image_count > 0:
        image_part = (
            f"사용자가 촬영한 {image_count}장의 사진을 분석하여 다음 정보를 파악해주세요:\n"
            "- 음식/서비스의 품질과 상태\n"
            "- 분위기와 환경\n"
            "- 특별한 특징이나 포인트\n"
            "- 전반적인 인상"
        )

    keyword_part = f"사용자가 선택한 키워드: {', '.join(keywords)}" if keywords else ""

    branch_lines = [f"지점명: {branch_info.get('name', '')}"]
    if branch_info.get("description"):
        branch_lines.append(f"설명: {branch_info['description']}")
    if branch_info.get("industry"):
        branch_lines.append(f"업종: {branch_info['industry']}")
    if branch_info.get("address"):
        branch_lines.append(f"주소: {branch_info['address']}")

    tone = TONE_BY_RATING.get(int(rating), TONE_BY_RATING[3])

    return (
        "당신은 전문적인 리뷰 작성 AI입니다. 사용자가 제공한 정보를 바탕으로 "
        "자연스럽고 진정성 있는 리뷰를 작성해주세요.\n\n"
        "주요 지침:\n"
        f"1. {tone} 경험을 반영한 톤으로 작성\n"
        "2. 구체적이고 생생한 표현 사용\n"
        "3. 과도한 홍보성 표현 지양\n"
        "4. 개인적인 경험과 감정을 자연스럽게 포함\n"
        "5. 한국어로 작성 (사용자가 영어를 요청한 경우 제외)\n"
        "6. 100-200자 내외의 적절한 길이\n"
        "7. 이모지 사용 금지\n\n"
        + "\n".join(branch_lines)
        + f"\n\n{image_part}\n\n{keyword_part}\n\n"
        "위 정보를 바탕으로 자연스럽고 진정성 있는 리뷰를 작성해주세요."
    )


def _image_parts(images: List[str]) -> List[dict]:
    parts = []
    for image in images:
        # принимаем как data URL, так и голый base64
        url = image if image.startswith("data:") else f"data:image/jpeg;base64,{image}"
        parts.append({"type": "image_url", "image_url": {"url": url, "detail": "low"}})
    return parts


def generate_review(
    rating: int,
    keywords: List[str],
    branch_info: dict,
    images: Optional[List[str]] = None,
) -> Tuple[str, Optional[dict]]:
    images = images or []
    system_prompt = build_review_prompt(rating, keywords, branch_info, len(images))
    user_text = f"{rating}점 별점으로 리뷰를 작성해주세요."

    if images:
        user_content = [
            {"type": "text", "text": user_text + " 첨부한 사진들도 분석해주세요."}
        ] + _image_parts(images)
    else:
        user_content = user_text

    return chat_completion(system_prompt, user_content, max_tokens=300)


def fallback_review(branch_name: str, keywords: List[str]) -> str:
    if keywords:
        return (
            f"이번에 {branch_name}에 방문했는데 {', '.join(keywords)}가 특히 인상적이었습니다. "
            "좋은 경험이었어요!"
        )
    return f"이번에 {branch_name}에 방문했는데 좋은 경험이었어요!"


def generate_draft(
    rating: int,
    keywords: List[str],
    branch_info: dict,
    images: Optional[List[str]] = None,
) -> Tuple[str, bool]:
    """
    Черновик отзыва для мастера. Возвращает (text, used_fallback).
    Если модель недоступна или вернула пустой текст, используем шаблон без повторных попыток.
    """
    try:
        text, usage = generate_review(rating, keywords, branch_info, images)
    except ServiceError as e:
        logger.warning("Draft generation failed, using template: %s", e.message)
        return fallback_review(branch_info.get("name", ""), keywords), True

    if not text:
        logger.warning("Draft generation returned empty text, using template")
        return fallback_review(branch_info.get("name", ""), keywords), True

    if usage:
        logger.info("Draft generated, tokens used: %s", usage.get("total_tokens"))
    return text, False


def generate_caption(prompt: str) -> str:
    text, _ = chat_completion(CAPTION_SYSTEM_PROMPT, prompt, max_tokens=300)
    return text


def _heuristic_sentiment_from_text(text: str) -> str:
    """
    Определяем тональность ТОЛЬКО по тексту, без учёта ответа модели.
    Возвращает: 'positive', 'neutral' или 'negative'.
    """
    t = (text or "").lower()

    negative_markers = [
        "불만",
        "불친절",
        "맛없",
        "별로",
        "실망",
        "최악",
        "비추",
        "불량",
        "아쉬",
        "기대 이하",
        "재방문 의사 없",
        "다시는 안",
        "개선 필요",
    ]

    positive_markers = [
        "맛있",
        "친절",
        "추천",
        "최고",
        "완벽",
        "훌륭",
        "만족",
        "좋았",
        "좋은 경험",
        "인상적",
        "재방문 의사 있",
        "또 오",
        "대박",
    ]

    # явный негатив важнее похвалы
    if any(marker in t for marker in negative_markers):
        return "negative"

    if any(marker in t for marker in positive_markers):
        return "positive"

    return "neutral"


def _extract_json(text: str) -> dict:
    # модель иногда оборачивает JSON в markdown или текст, берём первую {...}
    raw = (text or "").strip()
    match = re.search(r"\{.*\}", raw, flags=re.S)
    json_str = match.group(0) if match else raw
    data = json.loads(json_str)
    if not isinstance(data, dict):
        raise ValueError("JSON object expected")
    return data


def _heuristic_analysis(text: str) -> dict:
    return {
        "sentiment": _heuristic_sentiment_from_text(text),
        "confidence": 0.5,
        "emotions": [],
        "keywords": [],
        "source": "heuristic",
    }


def _parse_sentiment_response(text: str, original: str) -> dict:
    """
    Ожидаем JSON, но если он кривой, возвращаем эвристику по исходному тексту.
    """
    try:
        data = _extract_json(text)
    except ValueError as e:
        logger.warning("Could not parse sentiment response as JSON: %r, error: %s", text, e)
        return _heuristic_analysis(original)

    sentiment = str(data.get("sentiment") or "").strip().lower()
    if sentiment not in {"positive", "neutral", "negative"}:
        sentiment = _heuristic_sentiment_from_text(original)

    try:
        confidence = float(data.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5

    return {
        "sentiment": sentiment,
        "confidence": max(0.0, min(confidence, 1.0)),
        "emotions": list(data.get("emotions") or []),
        "keywords": list(data.get("keywords") or []),
        "source": "llm",
    }


def analyze_sentiment(text: str) -> dict:
    prompt = (
        f"{SENTIMENT_PROMPT}\n"
        "응답 형식:\n"
        "마크다운이나 설명 없이 JSON 객체 하나만 반환하세요:\n"
        '{"sentiment": "positive|neutral|negative", "confidence": 0.0-1.0, '
        '"emotions": ["..."], "keywords": ["..."]}'
    )

    try:
        answer, _ = chat_completion(prompt, text or "", max_tokens=300, temperature=0.3)
    except ServiceError as e:
        logger.warning("Sentiment analysis fell back to heuristic: %s", e.message)
        return _heuristic_analysis(text)

    return _parse_sentiment_response(answer, text)
