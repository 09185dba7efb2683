class JobCancelled(Exception):
    """Raised to cooperatively abort a job run after an external cancel request."""
    pass

__all__ = ["JobCancelled"]
