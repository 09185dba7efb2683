"""Factory Boy factories for database models used in tests."""

from datetime import datetime

import factory
from factory.alchemy import SQLAlchemyModelFactory

from hifidl.database.db_manager import DownloadJob


class _BaseFactory(SQLAlchemyModelFactory):
    class Meta:
        abstract = True
        sqlalchemy_session = None
        sqlalchemy_session_persistence = "flush"


class DownloadJobFactory(_BaseFactory):
    class Meta:
        model = DownloadJob

    id = factory.Sequence(lambda n: f"job-{n:04d}")
    user_id = "user-1"
    user_email = "user@example.com"
    job_type = "album"
    album_id = factory.Sequence(lambda n: f"album-{n}")
    source = "qobuz"
    quality = 6
    format = "FLAC"
    lyrics_mode = "embed"
    album_title = factory.Sequence(lambda n: f"Album {n}")
    artist_name = "Artist"
    status = "completed"
    progress = 100
    file_name = factory.LazyAttribute(lambda obj: f"{obj.album_title}.zip")
    file_size = 1024
    download_url = factory.LazyAttribute(lambda obj: f"https://cdn.test/downloads/{obj.id}/{obj.file_name}")
    created_at = factory.LazyFunction(datetime.utcnow)
    updated_at = factory.LazyFunction(datetime.utcnow)


_FACTORIES = [DownloadJobFactory]


def set_session(session):
    for factory_cls in _FACTORIES:
        factory_cls._meta.sqlalchemy_session = session


def reset_session():
    for factory_cls in _FACTORIES:
        factory_cls._meta.sqlalchemy_session = None


__all__ = [
    "DownloadJobFactory",
    "set_session",
    "reset_session",
]
