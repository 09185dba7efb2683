import logging
import os
from typing import Any, Dict, Optional

from flask import Flask

from hifidl.config import Config
from hifidl.database.db_manager import initialize_database
from hifidl.domain.catalog import (
    CatalogRegistry,
    QobuzCatalog,
    TidalCatalog,
    build_lyrics_resolver,
)
from hifidl.domain.downloads import (
    ArtifactPersister,
    BatchScheduler,
    FileManager,
    JobController,
    JobDispatcher,
    QuotaPolicy,
    SqlAlchemyJobStore,
    TagEmbedder,
    TrackFetcher,
    TrackPipeline,
)
from hifidl.infrastructure.s3 import ObjectStore, S3ObjectStore
from hifidl.interfaces.http.routes import health_bp
from hifidl.observability import configure_structured_logging, metrics_blueprint
from hifidl.settings import load_pipeline_settings
from hifidl.utils.cache import TTLCache


logger = logging.getLogger(__name__)


def build_catalogs(app: Flask) -> CatalogRegistry:
    """Catalog providers configured from the app config; Qobuz is the primary source."""
    tokens = app.config.get('QOBUZ_AUTH_TOKENS') or []
    failed_tokens = TTLCache(
        maxsize=max(1, len(tokens)),
        ttl=max(1, int(app.config.get('QOBUZ_FAILED_TOKEN_TTL_SECONDS', 900))),
    )
    qobuz = QobuzCatalog(
        app_id=app.config.get('QOBUZ_APP_ID', ''),
        secret=app.config.get('QOBUZ_SECRET', ''),
        auth_tokens=tokens,
        failed_tokens=failed_tokens,
        timeout=app.config.get('CATALOG_REQUEST_TIMEOUT_SECONDS', 10),
    )
    tidal = TidalCatalog(
        auth_token=app.config.get('TIDAL_AUTH_TOKEN', ''),
        country_code=app.config.get('TIDAL_COUNTRY_CODE', 'US'),
        timeout=max(15, int(app.config.get('CATALOG_REQUEST_TIMEOUT_SECONDS', 10))),
    )
    return CatalogRegistry([qobuz, tidal], default='qobuz')


def create_app(
    config_overrides: Optional[Dict[str, Any]] = None,
    *,
    pipeline_overrides: Optional[Dict[str, Any]] = None,
    object_store: Optional[ObjectStore] = None,
    catalogs: Optional[CatalogRegistry] = None,
    embedder: Optional[TagEmbedder] = None,
    fetcher: Optional[TrackFetcher] = None,
    lyrics=None,
) -> Flask:
    """Build the worker application.

    Collaborators that talk to the outside world (object store, catalogs,
    codec tool, media downloads, lyrics) can be passed in; anything left as
    None is built from configuration.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    configure_structured_logging(app)

    initialize_database(app)

    settings = load_pipeline_settings(pipeline_overrides)
    store = SqlAlchemyJobStore(app)

    if object_store is None:
        object_store = S3ObjectStore(
            bucket=app.config['S3_BUCKET'],
            region=app.config['AWS_REGION'],
            endpoint_url=app.config.get('S3_ENDPOINT_URL'),
            cdn_domain=app.config.get('CDN_DOMAIN'),
        )
    if catalogs is None:
        catalogs = build_catalogs(app)
    if lyrics is None:
        lyrics = build_lyrics_resolver(
            cache=TTLCache(maxsize=settings.lyrics_cache_maxsize, ttl=max(1.0, settings.lyrics_cache_ttl)),
            api_url=settings.lyrics_api_url,
            user_agent=app.config.get('LYRICS_USER_AGENT', 'hifidl/1.0'),
        )
    if fetcher is None:
        fetcher = TrackFetcher(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            timeout=settings.media_timeout,
        )
    if embedder is None:
        embedder = TagEmbedder(
            ffmpeg_binary=settings.ffmpeg_binary,
            default_bitrate=settings.default_bitrate,
            transcode_timeout=settings.transcode_timeout,
            cover_timeout=settings.cover_timeout,
        )

    # Build domain services to keep orchestration wiring at the app boundary
    pipeline = TrackPipeline(fetcher, embedder, lyrics)
    scheduler = BatchScheduler(
        store,
        pipeline,
        concurrency=settings.concurrency,
        lyrics=lyrics,
        lyrics_prefetch_limit=settings.lyrics_prefetch_limit,
    )
    quota = QuotaPolicy(
        store,
        limit_bytes=settings.library_size_limit,
        window_days=settings.storage_window_days,
    )
    controller = JobController(
        store,
        catalogs,
        scheduler,
        embedder,
        ArtifactPersister(object_store, quota),
        FileManager(settings.scratch_dir),
        settings,
    )
    dispatcher = JobDispatcher(
        controller,
        store,
        workers=int(app.config.get('DOWNLOAD_QUEUE_WORKERS', 2)),
        flask_app=app,
    )

    app.extensions['pipeline_settings'] = settings
    app.extensions['job_store'] = store
    app.extensions['catalogs'] = catalogs
    app.extensions['job_controller'] = controller
    app.extensions['download_jobs'] = dispatcher
    logger.info(
        "Download pipeline ready: workers=%s, concurrency=%s, catalogs=%s",
        dispatcher.workers, settings.concurrency, ", ".join(catalogs.names()),
    )

    # --- Register Blueprints ---
    app.register_blueprint(metrics_blueprint)
    app.register_blueprint(health_bp)

    return app


def main() -> None:
    app = create_app()
    os.makedirs(app.extensions['pipeline_settings'].scratch_dir, exist_ok=True)

    if not app.config.get('QOBUZ_APP_ID') or not app.config.get('QOBUZ_AUTH_TOKENS'):
        logger.warning("Qobuz credentials not found in environment variables.")
        logger.warning("Set QOBUZ_APP_ID, QOBUZ_SECRET and QOBUZ_AUTH_TOKENS for the primary catalog.")
    if not app.config.get('TIDAL_AUTH_TOKEN'):
        logger.warning("TIDAL_AUTH_TOKEN not set; the secondary catalog will reject requests.")

    dispatcher = app.extensions['download_jobs']
    dispatcher.start()
    try:
        app.run(host=app.config['HOST'], port=app.config['PORT'], use_reloader=False)
    finally:
        dispatcher.shutdown()


if __name__ == '__main__':
    main()
