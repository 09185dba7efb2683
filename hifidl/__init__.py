"""Album and track download worker: fetch, tag, archive and publish."""

__version__ = "1.0.0"
