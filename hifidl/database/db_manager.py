# hifidl/database/db_manager.py
import logging
import os
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.engine import make_url

# Initialize the SQLAlchemy object
db = SQLAlchemy()
logger = logging.getLogger(__name__)


class DownloadJob(db.Model):
    __tablename__ = 'download_jobs'

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(128), nullable=False, index=True)
    user_email = db.Column(db.String(255), nullable=True, index=True)
    job_type = db.Column(db.String(16), nullable=False, default='album')

    # Catalog target
    album_id = db.Column(db.String(64), nullable=False)
    track_id = db.Column(db.String(64), nullable=True)
    source = db.Column(db.String(32), nullable=False, default='qobuz')
    country = db.Column(db.String(8), nullable=True)

    # Requested output
    quality = db.Column(db.Integer, nullable=False, default=6)
    format = db.Column(db.String(16), nullable=False, default='FLAC')
    bitrate = db.Column(db.Integer, nullable=True)
    lyrics_mode = db.Column(db.String(16), nullable=False, default='embed')
    track_name_template = db.Column(db.String(255), nullable=True)
    zip_name_template = db.Column(db.String(255), nullable=True)

    # Filled in once metadata is known
    album_title = db.Column(db.String(255), nullable=True)
    artist_name = db.Column(db.String(255), nullable=True)
    tracks_count = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(32), nullable=False, default='pending', index=True)
    progress = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.String(512), nullable=True)
    error = db.Column(db.Text, nullable=True)
    file_name = db.Column(db.String(512), nullable=True)
    file_size = db.Column(db.BigInteger, nullable=True)
    download_url = db.Column(db.String(1024), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<DownloadJob {self.id} {self.job_type}:{self.album_id} [{self.status}]>'


def _sqlite_directory(uri):
    """Directory holding a file-backed sqlite database, or None for anything else."""
    if not uri:
        return None
    url = make_url(uri)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return None
    return os.path.dirname(url.database) or None


def initialize_database(app):
    """Bind the extension to ``app`` and create the ``download_jobs`` table."""
    db.init_app(app)

    try:
        db_dir = _sqlite_directory(app.config.get("SQLALCHEMY_DATABASE_URI"))
    except Exception as e:
        logger.warning("Unparseable SQLALCHEMY_DATABASE_URI, skipping directory setup: %s", e)
        db_dir = None
    if db_dir and not os.path.isdir(db_dir):
        os.makedirs(db_dir, exist_ok=True)
        logger.info("Created job store directory: %s", db_dir)

    with app.app_context():
        db.create_all()
        logger.info("Job store schema ready (%s)", DownloadJob.__tablename__)


__all__ = ["db", "DownloadJob", "initialize_database"]
