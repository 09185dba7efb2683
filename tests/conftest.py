import os
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path so 'hifidl' and 'tests.support' import correctly
_TESTS_DIR = os.path.dirname(__file__)
_ROOT_DIR = os.path.abspath(os.path.join(_TESTS_DIR, os.pardir))
if _ROOT_DIR not in sys.path:
    sys.path.insert(0, _ROOT_DIR)

from tests.support import factories as test_factories
from tests.support import stubs as test_stubs


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path_factory):
    """Ensure a clean env for tests with per-test sqlite files and scratch dirs."""
    db_dir = tmp_path_factory.mktemp("db")
    db_path = Path(db_dir) / "test.sqlite"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path.as_posix()}")
    monkeypatch.setenv("SCRATCH_DIR", str(tmp_path_factory.mktemp("scratch")))
    monkeypatch.setenv("LOG_JSON", "false")
    for name in ("QOBUZ_AUTH_TOKENS", "TIDAL_AUTH_TOKEN", "LYRICS_API_URL", "S3_ENDPOINT_URL", "CDN_DOMAIN"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def album():
    return test_stubs.make_album(3)


@pytest.fixture
def catalog(album):
    return test_stubs.FakeCatalog(album)


@pytest.fixture
def object_store():
    return test_stubs.FakeObjectStore()


@pytest.fixture
def store():
    return test_stubs.RecordingStore()


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return str(path)


@pytest.fixture
def app(tmp_path, catalog, object_store):
    from hifidl.app import create_app
    from hifidl.domain.catalog import CatalogRegistry

    db_path = tmp_path / "app.sqlite"
    application = create_app(
        {
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path.as_posix()}",
            "LOG_JSON": False,
            "DOWNLOAD_QUEUE_WORKERS": 1,
            "TESTING": True,
        },
        pipeline_overrides={
            "scratch_dir": str(tmp_path / "app-scratch"),
            "retry_base_delay": 0,
            "lyrics_prefetch_limit": 0,
        },
        object_store=object_store,
        catalogs=CatalogRegistry([catalog]),
        embedder=test_stubs.build_embedder(),
        fetcher=test_stubs.build_fetcher(),
        lyrics=test_stubs.FakeLyrics(),
    )
    yield application
    application.extensions['download_jobs'].shutdown()


@pytest.fixture
def app_context(app):
    with app.app_context():
        yield app


@pytest.fixture
def db_session(app_context):
    from hifidl.database.db_manager import db

    test_factories.set_session(db.session)
    try:
        yield db.session
    finally:
        try:
            db.session.rollback()
        except Exception:
            pass
        db.session.remove()
        test_factories.reset_session()


@pytest.fixture
def factories(db_session):
    yield test_factories


@pytest.fixture
def client(app):
    return app.test_client()
