from __future__ import annotations

import dataclasses
import sys
from pathlib import Path

import pytest

# Garante que o pacote rango_profile seja importável durante os testes locais
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rango_profile.core import config as core_config  # noqa: E402
from rango_profile.db import create_tables  # noqa: E402
from rango_profile.db import session as db_session  # noqa: E402
from rango_profile.repositories.resource_store import ResourceStore  # noqa: E402
from rango_profile.services.resource_service import ResourceService  # noqa: E402


@pytest.fixture()
def temp_db(tmp_path, monkeypatch):
    """Configura um SQLite temporário e reseta caches de settings/engine."""
    db_file = tmp_path / "test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_file}")
    core_config.get_settings.cache_clear()
    db_session.get_engine.cache_clear()
    db_session._get_sessionmaker.cache_clear()  # type: ignore[attr-defined]

    engine = db_session.get_engine()
    create_tables.create_all()

    yield db_file

    db_session.Base.metadata.drop_all(bind=engine)
    engine.dispose()
    core_config.get_settings.cache_clear()
    db_session.get_engine.cache_clear()
    db_session._get_sessionmaker.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def make_service(temp_db, sleeps):
    """Builds services that record backoff pauses instead of sleeping."""

    def factory(store: ResourceStore | None = None, **env) -> ResourceService:
        settings = core_config.get_settings()
        if env:
            settings = dataclasses.replace(settings, **env)
        return ResourceService(store or ResourceStore(), settings=settings, sleep=sleeps.append, rng=lambda: 0.5)

    return factory


@pytest.fixture()
def service(make_service) -> ResourceService:
    return make_service()
