import logging
import os
import shutil
import zipfile
from typing import List, Sequence

logger = logging.getLogger(__name__)


class FileManager:
    def __init__(self, scratch_root):
        """Owns the per-job scratch directories under ``scratch_root``.

        :param scratch_root: Parent directory; each job gets ``dl-<job id>`` below it.
        """
        self.scratch_root = scratch_root
        os.makedirs(self.scratch_root, exist_ok=True)

    def job_dir(self, job_id: str) -> str:
        return os.path.join(self.scratch_root, f"dl-{job_id}")

    def create_job_dir(self, job_id: str) -> str:
        path = self.job_dir(job_id)
        os.makedirs(path, exist_ok=True)
        logger.debug("Ensured scratch directory exists: %s", path)
        return path

    def cleanup_job_dir(self, job_id: str) -> None:
        """Remove the job's scratch directory; never raises."""
        path = self.job_dir(job_id)
        try:
            if os.path.isdir(path):
                shutil.rmtree(path)
                logger.debug("Removed scratch directory %s", path)
        except OSError as e:
            logger.warning("Could not remove scratch directory %s: %s", path, e)
            shutil.rmtree(path, ignore_errors=True)


class ArchiveAssembler:
    """Package several output files into one store-only ZIP."""

    def assemble(self, files: Sequence[str], zip_path: str, folder_name: str) -> int:
        """Write ``files`` under ``folder_name/`` in ``zip_path``; returns the archive size.

        Inputs that disappeared since they were produced are skipped with a warning.
        """
        written: List[str] = []
        # Audio is already compressed, so entries are stored as-is
        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_STORED, allowZip64=True) as archive:
            for path in files:
                if not os.path.isfile(path):
                    logger.warning("Skipping missing file while creating archive: %s", path)
                    continue
                arcname = f"{folder_name}/{os.path.basename(path)}"
                archive.write(path, arcname=arcname)
                written.append(arcname)
        # Size is only meaningful once the central directory has been flushed
        size = os.path.getsize(zip_path)
        logger.info("Created archive %s with %d file(s), %d bytes", zip_path, len(written), size)
        return size


__all__ = ["FileManager", "ArchiveAssembler"]
