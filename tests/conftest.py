from types import SimpleNamespace

import mongomock
import pytest

from agrifair import create_app
from agrifair.auth import AuthService
from agrifair.config import Settings
from agrifair.pricing import PricingClient
from agrifair.repositories import FallbackRepository, LocalRepository, MongoRepository
from agrifair.storage import LocalStore


class FakeModel:
    """Stands in for a Gemini GenerativeModel."""

    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.prompts = []

    def generate_content(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


class FixedClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def settings(tmp_path):
    return Settings(secret_key="test-secret", data_dir=str(tmp_path / "data"))


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["agrifair_test"]


@pytest.fixture
def local_repo(settings):
    return LocalRepository(LocalStore(settings.data_dir))


@pytest.fixture
def local_only_repo(local_repo):
    return FallbackRepository(local_repo)


@pytest.fixture
def cloud_repo(local_repo, mongo_db):
    return FallbackRepository(local_repo, MongoRepository(mongo_db))


@pytest.fixture
def sent():
    return []


@pytest.fixture
def sender(sent):
    def _send(settings, mobile, code):
        sent.append((mobile, code))
        return False
    return _send


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def fake_model():
    return FakeModel()


def make_app(settings, repo, model, sender, clock):
    auth = AuthService(settings, repo, clock=clock, sender=sender)
    pricing = PricingClient("", model=model)
    app = create_app(settings, repo=repo, pricing=pricing, auth=auth)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def app(settings, local_only_repo, fake_model, sender, clock):
    return make_app(settings, local_only_repo, fake_model, sender, clock)


@pytest.fixture
def cloud_app(settings, cloud_repo, fake_model, sender, clock):
    return make_app(settings, cloud_repo, fake_model, sender, clock)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def cloud_client(cloud_app):
    return cloud_app.test_client()
