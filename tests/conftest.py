import copy
import io
import json
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from firebase_admin import firestore
from PIL import Image

from agrismart.app import app, get_gemini, get_identity, get_optional_history
from agrismart.errors import IdentityError
from agrismart.gemini import GeminiClient
from agrismart.history import HistoryStore
from agrismart.schemas import AuthUser

CROP_OUTPUT = {
    "recommended_crop": "Rice",
    "fertilizer": "Urea with a basal dose of DAP",
    "tips": "* Keep the field flooded during tillering\n* Transplant 20-25 day old seedlings",
}

DISEASE_OUTPUT = {
    "disease": "Tomato Early Blight",
    "confidence": "92%",
    "cureInstructions": "1. Remove infected leaves.\n2. Spray chlorothalonil every 7 days.",
    "preventionTips": "Rotate crops and water at the base of the plant.",
}

SAMPLE_CONDITIONS = {
    "nitrogen": 70,
    "phosphorus": 75,
    "potassium": 105,
    "temperature": 25,
    "humidity": 50,
    "ph": 7,
    "rainfall": 160,
}


# --- In-memory Firestore ---
class FakeSnapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data
        self.exists = data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDocument:
    def __init__(self, db, path):
        self._db = db
        self.path = path
        self.id = path[-1]

    def collection(self, name):
        return FakeCollection(self._db, self.path + (name,))

    def get(self):
        return FakeSnapshot(self.id, self._db.docs.get(self.path))

    def delete(self):
        self._db.mutations += 1
        self._db.docs.pop(self.path, None)


class FakeQuery:
    def __init__(self, collection, field, direction):
        self._collection = collection
        self._field = field
        self._direction = direction

    def stream(self):
        docs = self._collection.documents()
        docs.sort(key=lambda item: item[1].get(self._field), reverse=self._direction == firestore.Query.DESCENDING)
        for doc_id, data in docs:
            yield FakeSnapshot(doc_id, data)


class FakeCollection:
    def __init__(self, db, path):
        self._db = db
        self.path = path

    def document(self, doc_id=None):
        return FakeDocument(self._db, self.path + (doc_id or uuid.uuid4().hex,))

    def add(self, data):
        ref = self.document()
        now = self._db.now()
        self._db.docs[ref.path] = {
            key: now if value is firestore.SERVER_TIMESTAMP else copy.deepcopy(value) for key, value in data.items()
        }
        self._db.mutations += 1
        return now, ref

    def order_by(self, field, direction="ASCENDING"):
        return FakeQuery(self, field, direction)

    def documents(self):
        return [(path[-1], data) for path, data in self._db.docs.items() if path[:-1] == self.path]


class FakeFirestore:
    """Enough of the Firestore client for HistoryStore; server timestamps tick one second per write."""

    def __init__(self):
        self.docs = {}
        self.mutations = 0
        self._clock = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def now(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    def collection(self, name):
        return FakeCollection(self, (name,))


# --- Identity ---
class FakeIdentity:
    app = object()

    def __init__(self):
        self.accounts = {"farmer@example.com": ("secret123", "alice", "Alice")}
        self.tokens = {"token-alice": {"uid": "alice", "email": "farmer@example.com", "name": "Alice"}}

    async def sign_in(self, email, password):
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise IdentityError("Invalid email or password.", code="INVALID_LOGIN_CREDENTIALS")
        return AuthUser(uid=account[1], email=email, display_name=account[2]), f"token-{account[1]}"

    async def sign_up(self, email, password, display_name=None):
        if email in self.accounts:
            raise IdentityError("An account with this email already exists.", code="EMAIL_EXISTS")
        uid = f"user{len(self.accounts)}"
        self.accounts[email] = (password, uid, display_name)
        self.tokens[f"token-{uid}"] = {"uid": uid, "email": email, "name": display_name}
        return AuthUser(uid=uid, email=email, display_name=display_name), f"token-{uid}"

    def create_session_cookie(self, id_token):
        return f"cookie:{id_token}"

    def verify_id_token(self, id_token):
        if id_token not in self.tokens:
            raise ValueError("Token expired or invalid")
        return self.tokens[id_token]

    def verify_session_cookie(self, cookie):
        return self.verify_id_token(cookie.removeprefix("cookie:"))


# --- Gemini ---
def gemini_reply(payload) -> httpx.Response:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return httpx.Response(
        200,
        json={
            "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": "STOP"}],
            "usageMetadata": {"promptTokenCount": 120, "candidatesTokenCount": 80, "totalTokenCount": 200},
        },
    )


def gemini_error(code: int, status: str, message: str) -> httpx.Response:
    return httpx.Response(code, json={"error": {"code": code, "message": message, "status": status}})


class GeminiStub:
    """Mock transport handler that replays queued responses and records requests."""

    def __init__(self):
        self.responses = []
        self.requests = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def payloads(self):
        return [json.loads(request.content) for request in self.requests]


def make_image(size=(64, 48), fmt="PNG", color=(40, 140, 60)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def gemini_stub():
    return GeminiStub()


@pytest.fixture
def gemini(gemini_stub):
    return GeminiClient(api_key="test-key", transport=httpx.MockTransport(gemini_stub))


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def store(db):
    return HistoryStore(db)


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def anonymous_client(gemini, store, identity):
    app.dependency_overrides[get_gemini] = lambda: gemini
    app.dependency_overrides[get_optional_history] = lambda: store
    app.dependency_overrides[get_identity] = lambda: identity
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client(anonymous_client):
    anonymous_client.headers.update({"Authorization": "Bearer token-alice"})
    return anonymous_client
