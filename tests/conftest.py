import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add the project root to sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app_factory import create_app
from models import db


@pytest.fixture(autouse=True)
def no_groq_key(monkeypatch):
    """Tests never reach the real language model"""
    monkeypatch.delenv('GROQ_API_KEY', raising=False)


def make_completion(content):
    return MagicMock(choices=[MagicMock(message=MagicMock(content=content))])


@pytest.fixture
def mock_groq_client():
    """Mock Groq client answering every prompt with 'Test response'"""
    mock = MagicMock()
    mock.chat.completions.create.return_value = make_completion("Test response")
    return mock


@pytest.fixture
def groq_client_factory():
    """Build a mock client whose successive calls return or raise the given items"""
    def build(*responses):
        client = MagicMock()
        client.chat.completions.create.side_effect = [
            r if isinstance(r, Exception) else make_completion(r) for r in responses
        ]
        return client
    return build


@pytest.fixture
def sleeps():
    """Seconds passed to sleep; pass `sleep=sleeps.append` to the code under test"""
    return []


@pytest.fixture
def app(tmp_path):
    app = create_app('testing')
    app.config['UPLOAD_FOLDER'] = str(tmp_path / 'uploads')
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def sample_transcript():
    return [
        {'sender_role': 'doctor', 'original_text': 'What brings you in today?', 'translated_text': '¿Qué le trae hoy?'},
        {'sender_role': 'patient', 'original_text': 'Me duele la cabeza desde ayer.', 'translated_text': 'My head has hurt since yesterday.'},
        {'sender_role': 'doctor', 'original_text': 'Take 400 mg ibuprofen every 8 hours.', 'translated_text': 'Tome 400 mg de ibuprofeno cada 8 horas.'},
    ]
