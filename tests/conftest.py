import pytest

from app import create_app
from models import db
from schemas import CommentCreate, UserCreate, VideoCreate
from storage import get_storage


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SESSION_TTL_HOURS": 1,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def storage(app):
    with app.app_context():
        yield get_storage()


# ==============================
# STORAGE HELPERS
# ==============================
@pytest.fixture
def make_user(storage):
    def _make(username, display_name=None):
        return storage.create_user(UserCreate(
            username=username,
            password="not-a-real-hash",
            display_name=display_name,
        ))
    return _make


@pytest.fixture
def make_video(storage):
    def _make(user, title="Untitled", description=None, category_id=None):
        return storage.create_video(VideoCreate(
            user_id=user.id,
            category_id=category_id,
            title=title,
            description=description,
            video_url=f"https://cdn.example.com/{title.lower().replace(' ', '-')}.mp4",
        ))
    return _make


@pytest.fixture
def make_comment(storage):
    def _make(video, user, content="Nice", parent_id=None):
        return storage.create_comment(CommentCreate(
            video_id=video.id,
            user_id=user.id,
            content=content,
            parent_id=parent_id,
        ))
    return _make


# ==============================
# API HELPERS
# ==============================
@pytest.fixture
def bearer():
    def _bearer(token):
        return {"Authorization": f"Bearer {token}"}
    return _bearer


@pytest.fixture
def register(client):
    def _register(username, password="secret-pass", **extra):
        response = client.post("/api/register", json={
            "username": username,
            "password": password,
            **extra,
        })
        assert response.status_code == 201, response.get_json()
        body = response.get_json()
        return body["user"], body["token"]
    return _register


@pytest.fixture
def upload(client, bearer):
    def _upload(token, title="Untitled", **fields):
        payload = {
            "title": title,
            "videoUrl": f"https://cdn.example.com/{title.lower().replace(' ', '-')}.mp4",
            **fields,
        }
        response = client.post("/api/videos", json=payload, headers=bearer(token))
        assert response.status_code == 201, response.get_json()
        return response.get_json()
    return _upload
