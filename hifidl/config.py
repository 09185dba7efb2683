#!/usr/bin/env python
# hifidl/config.py
import json
import os
import tempfile
from typing import List

from dotenv import load_dotenv

# Pick up a local .env before any attribute below is evaluated
load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))

GIB = 1024 * 1024 * 1024


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _get_csv_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name)
    source = raw if raw is not None else default
    return [token.strip() for token in source.split(",") if token and token.strip()]


def _get_token_list(name: str) -> List[str]:
    """Accept either a JSON array or a comma separated list."""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return []
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return []
        return [str(token).strip() for token in parsed if str(token).strip()]
    return _get_csv_list(name, "")


class Config:
    # Database (durable job store)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'database', 'instance', 'hifidl.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Scratch space; one sub-directory per job run
    SCRATCH_DIR = os.getenv('SCRATCH_DIR', tempfile.gettempdir())

    # Track pipeline
    TRACK_CONCURRENCY = _get_int('TRACK_CONCURRENCY', 3)
    TRACK_MAX_RETRIES = _get_int('TRACK_MAX_RETRIES', 3)
    TRACK_RETRY_BASE_DELAY_SECONDS = _get_float('TRACK_RETRY_BASE_DELAY_SECONDS', 2.0)
    MEDIA_DOWNLOAD_TIMEOUT_SECONDS = _get_int('MEDIA_DOWNLOAD_TIMEOUT_SECONDS', 300)
    COVER_DOWNLOAD_TIMEOUT_SECONDS = _get_int('COVER_DOWNLOAD_TIMEOUT_SECONDS', 15)
    TRANSCODE_TIMEOUT_SECONDS = _get_int('TRANSCODE_TIMEOUT_SECONDS', 600)
    FFMPEG_BINARY = os.getenv('FFMPEG_BINARY', 'ffmpeg')
    DEFAULT_LOSSY_BITRATE = _get_int('DEFAULT_LOSSY_BITRATE', 320)

    # Naming
    DEFAULT_TRACK_NAME_TEMPLATE = os.getenv('DEFAULT_TRACK_NAME_TEMPLATE', '{track} - {name}')
    DEFAULT_ZIP_NAME_TEMPLATE = os.getenv('DEFAULT_ZIP_NAME_TEMPLATE', '{artists} - {name}')

    # Lyrics
    # When set, lyrics go through the remote lyrics service instead of the direct chain
    LYRICS_API_URL = os.getenv('LYRICS_API_URL', '')
    LYRICS_PREFETCH_LIMIT = _get_int('LYRICS_PREFETCH_LIMIT', 5)
    LYRICS_CACHE_MAXSIZE = max(1, _get_int('LYRICS_CACHE_MAXSIZE', 512))
    LYRICS_CACHE_TTL_SECONDS = _get_int('LYRICS_CACHE_TTL_SECONDS', 3600)
    LYRICS_USER_AGENT = os.getenv('LYRICS_USER_AGENT', 'hifidl/1.0')

    # Storage quota
    LIBRARY_SIZE_LIMIT_BYTES = _get_int('LIBRARY_SIZE_LIMIT_BYTES', 30 * GIB)
    STORAGE_WINDOW_DAYS = _get_int('STORAGE_WINDOW_DAYS', 30)

    # Worker runtime
    DOWNLOAD_QUEUE_WORKERS = _get_int('DOWNLOAD_QUEUE_WORKERS', 2)
    PROGRESS_QUEUE_MAXSIZE = max(1, _get_int('PROGRESS_QUEUE_MAXSIZE', 64))
    READINESS_QUEUE_THRESHOLD = _get_int('READINESS_QUEUE_THRESHOLD', 25)

    # Object storage
    S3_BUCKET = os.getenv('S3_BUCKET', 'hifidl-downloads')
    AWS_REGION = os.getenv('AWS_REGION', 'eu-north-1')
    S3_ENDPOINT_URL = os.getenv('S3_ENDPOINT_URL') or None
    CDN_DOMAIN = os.getenv('CDN_DOMAIN', '')

    # Catalog providers
    QOBUZ_APP_ID = os.getenv('QOBUZ_APP_ID', '')
    QOBUZ_SECRET = os.getenv('QOBUZ_SECRET', '')
    QOBUZ_AUTH_TOKENS = _get_token_list('QOBUZ_AUTH_TOKENS')
    QOBUZ_FAILED_TOKEN_TTL_SECONDS = _get_int('QOBUZ_FAILED_TOKEN_TTL_SECONDS', 900)
    TIDAL_AUTH_TOKEN = os.getenv('TIDAL_AUTH_TOKEN', '')
    TIDAL_COUNTRY_CODE = os.getenv('TIDAL_COUNTRY_CODE', 'US')
    CATALOG_REQUEST_TIMEOUT_SECONDS = _get_int('CATALOG_REQUEST_TIMEOUT_SECONDS', 10)

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_JSON = _get_bool('LOG_JSON', True)

    # Health/metrics HTTP surface of the worker
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = _get_int('PORT', 8080)
