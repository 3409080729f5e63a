import os
import tempfile

# окружение должно быть готово до импорта модулей приложения
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STATIC_DIR"] = tempfile.mkdtemp(prefix="review-share-static-")
os.environ["OPENAI_API_KEY"] = "test-key"
for name in (
    "OPENAI_MODEL",
    "OPENAI_API_URL",
    "OPENAI_TIMEOUT",
    "PLATFORMS_FILE",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "APP_TIMEZONE",
    "FEED_MAX_USERS",
    "ADMIN_LOGIN",
    "ADMIN_PASSWORD",
    "ADMIN_SECRET",
):
    os.environ.pop(name, None)

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

import main
import tracking
from database import Base, SessionLocal, engine, get_db
from models import Agency, Branch, ReviewKeyword
from wizard import DEFAULT_KEYWORDS


def openai_response(content, usage=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.text = "error" if status_code != 200 else ""
    response.json.return_value = {
        "choices": [{"message": {"content": content}}],
        "usage": usage or {"total_tokens": 42},
    }
    return response


@pytest.fixture
def db_session():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    tracking.hub.reset()

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session):
    def get_db_override():
        yield db_session

    main.app.dependency_overrides[get_db] = get_db_override
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client):
    main.app.dependency_overrides[main.require_admin] = lambda: None
    return client


@pytest.fixture
def keywords(db_session):
    rows = []
    for rating, words in DEFAULT_KEYWORDS.items():
        for word in words:
            row = ReviewKeyword(rating=rating, keyword=word)
            db_session.add(row)
            rows.append(row)
    db_session.commit()
    return rows


@pytest.fixture
def branch(db_session):
    agency = Agency(name="Agency A", email="owner@example.com")
    db_session.add(agency)
    db_session.flush()

    branch = Branch(
        agency_id=agency.id,
        name="Cafe X",
        address="서울 중구 1",
        industry="cafe",
        latitude=37.1,
        longitude=127.2,
    )
    db_session.add(branch)
    db_session.commit()
    db_session.refresh(branch)
    return branch
