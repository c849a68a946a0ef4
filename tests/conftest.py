import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient

from community_vault import models
from community_vault.ai import AIService
from community_vault.config import Settings
from community_vault.database import SessionLocal, build_engine
from community_vault.mailer import EmailSender
from community_vault.main import create_app
from community_vault.services import build_services
from community_vault.storage import LocalStorage
from community_vault.vector_store import VectorIndex
from community_vault.whop import TOKEN_ISSUER, WhopClient

APP_ID = "app_test"
SIGNING_SECRET = "whsec_test"


def make_settings(**overrides) -> Settings:
    values = dict(
        app_env="test",
        database_url="sqlite://",
        app_url="http://localhost:8000",
        whop_app_id=APP_ID,
        whop_api_key="whop_key",
        whop_public_key="",
        whop_signing_secret=SIGNING_SECRET,
        whop_api_base="https://api.whop.test",
        whop_checkout_url="https://whop.com/checkout",
        openai_api_key="",
        summary_model="gpt-4o-mini",
        embedding_model="text-embedding-3-large",
        transcription_model="gpt-4o-mini-transcribe",
        pinecone_api_key="",
        pinecone_index="",
        aws_region="",
        s3_bucket_name="",
        s3_public_host="",
        aws_access_key_id="",
        aws_secret_access_key="",
        upload_dir="uploads",
        sendgrid_api_key="",
        email_from="vault@example.com",
        creator_split=Decimal("0.89"),
        community_split=Decimal("0.10"),
        platform_split=Decimal("0.01"),
        dev_user_whop_id="test_user_local",
        provider_timeout_seconds=5.0,
    )
    values.update(overrides)
    return Settings(**values)


# --- Fake vendor clients ---

class FakeOpenAI:
    """Mimics the slice of the OpenAI client the AI service calls."""

    def __init__(self):
        self.summary_reply = json.dumps({"summary": "A short summary.", "keyPoints": ["one", "two"]})
        self.project_reply = json.dumps({"summary": "Project overview.", "keyPoints": []})
        self.transcript = "spoken words from the video"
        self.chat_calls = []
        self.embedding_inputs = []
        self.transcriptions = []

        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._chat))
        self.embeddings = SimpleNamespace(create=self._embed)
        self.audio = SimpleNamespace(transcriptions=SimpleNamespace(create=self._transcribe))

    def _chat(self, **kwargs):
        self.chat_calls.append(kwargs)
        system = kwargs["messages"][0]["content"]
        reply = self.project_reply if "combine multiple" in system else self.summary_reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])

    def _embed(self, model, input):
        self.embedding_inputs.append(input)
        return SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2, 0.3])])

    def _transcribe(self, model, file):
        self.transcriptions.append(file)
        return SimpleNamespace(text=self.transcript)


class FakeIndex:
    def __init__(self):
        self.records = {}
        self.fail_upsert = False

    def upsert(self, vectors, namespace):
        if self.fail_upsert:
            from pinecone.exceptions import PineconeException
            raise PineconeException("index unavailable")
        for vector in vectors:
            self.records[(namespace, vector["id"])] = vector

    def delete(self, ids, namespace):
        for file_id in ids:
            self.records.pop((namespace, file_id), None)

    def query(self, vector, namespace, top_k, include_metadata):
        matches = [
            SimpleNamespace(id=record["id"], score=0.9, metadata=record["metadata"])
            for (ns, _), record in self.records.items()
            if ns == namespace
        ]
        return SimpleNamespace(matches=matches[:top_k])


class FakeSendGrid:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, message):
        if self.fail:
            raise RuntimeError("smtp relay down")
        self.sent.append(message)
        return SimpleNamespace(status_code=202)


class WhopKeys:
    """ES256 key pair standing in for the Whop proxy's signing key."""

    def __init__(self):
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.public_pem = self.private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()

    def token(self, user_id, audience=APP_ID, private_key=None):
        return jwt.encode(
            {"sub": user_id, "aud": audience, "iss": TOKEN_ISSUER},
            private_key or self.private_key,
            algorithm="ES256",
        )


@pytest.fixture
def whop_keys():
    return WhopKeys()


@pytest.fixture
def whop_profiles():
    """Whop user id -> profile JSON returned by the mocked Whop API."""
    return {}


@pytest.fixture
def openai_client():
    return FakeOpenAI()


@pytest.fixture
def vector_index():
    return FakeIndex()


@pytest.fixture
def sendgrid_client():
    return FakeSendGrid()


@pytest.fixture
def settings(tmp_path, whop_keys):
    return make_settings(upload_dir=str(tmp_path / "uploads"), whop_public_key=whop_keys.public_pem)


@pytest.fixture
def services(settings, openai_client, vector_index, sendgrid_client, whop_profiles):
    def whop_api(request):
        user_id = request.url.path.rsplit("/", 1)[-1]
        if user_id not in whop_profiles:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, json=whop_profiles[user_id])

    whop = WhopClient(
        app_id=settings.whop_app_id,
        api_key=settings.whop_api_key,
        public_key=settings.whop_public_key,
        api_base=settings.whop_api_base,
        http=httpx.Client(transport=httpx.MockTransport(whop_api)),
    )
    return build_services(
        settings,
        storage=LocalStorage(settings.upload_dir),
        ai=AIService(client=openai_client),
        vectors=VectorIndex(index=vector_index),
        email=EmailSender(from_email=settings.email_from, client=sendgrid_client),
        whop=whop,
    )


@pytest.fixture
def app(settings, services):
    return create_app(settings=settings, services=services, engine=build_engine("sqlite://"))


@pytest.fixture
def db(app):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role=models.UserRole.CREATOR, name=None, email=None):
        counter["n"] += 1
        user = models.User(
            whop_user_id=f"user_{counter['n']}",
            name=name or f"User {counter['n']}",
            email=email,
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def client_for(app):
    """TestClient authenticated through the session cookie."""

    def _client(user):
        test_client = TestClient(app)
        test_client.headers["Cookie"] = f"comvault_user_id={user.id}"
        return test_client

    return _client


@pytest.fixture
def upload(services):
    """Write bytes into local storage under the user's prefix and return the key."""

    def _upload(user, data, filename="notes.txt"):
        presigned = services.storage.presign_upload(user.id, filename, "text/plain")
        services.storage.save_object(presigned.key, data)
        return presigned.key

    return _upload


def upload_payload(key, **overrides):
    payload = {
        "key": key,
        "filename": "notes.txt",
        "title": "Study notes",
        "description": "Lecture notes for week one.",
        "category": "Education",
        "type": "TEXT",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_file(db):
    """Insert a File row directly, bypassing the ingestion pipeline."""
    counter = {"n": 0}

    def _make(owner, is_premium=False, price="0", title=None, category="Education", project=None):
        counter["n"] += 1
        file = models.File(
            owner_id=owner.id,
            project_id=project.id if project is not None else None,
            title=title or f"File {counter['n']}",
            description="Seeded file description",
            category=category,
            type=models.FileType.TEXT,
            storage_key=f"{owner.id}/seed-{counter['n']}.txt",
            storage_url=f"/uploads/{owner.id}/seed-{counter['n']}.txt",
            checksum=f"{counter['n']:064d}",
            summary="Seeded summary",
            key_points=["seeded"],
            is_premium=is_premium,
            price=Decimal(price),
        )
        db.add(file)
        db.commit()
        db.refresh(file)
        return file

    return _make
