"""Physical removal of evicted saves.

Each save consists of a primary ``.ess`` file and an optional ``.skse``
co-save. Removal is one file at a time and best effort:

1. Remove (or recycle) the primary file; failure is logged and reported
2. Remove (or recycle) the sidecar; failure is ignored

A primary file that is already gone counts as removed, so removal is
idempotent. Nothing is retried here: the next sweep rebuilds from disk and
will find any file that is still present.
"""

import os
from pathlib import Path

import structlog

from savekeeper.common.models import SaveRecord

logger = structlog.get_logger()


class SaveFileRemover:
    """Deletes or recycles the files belonging to a save record."""

    def __init__(self, save_dir: Path, recycle_dir: Path | None = None):
        """Initialize the remover.

        Args:
            save_dir: Directory holding the save files
            recycle_dir: Move files here instead of deleting them (soft delete)
        """
        self.save_dir = Path(save_dir)
        self.recycle_dir = Path(recycle_dir) if recycle_dir is not None else None

    @property
    def recycles(self) -> bool:
        return self.recycle_dir is not None

    def remove(self, record: SaveRecord) -> bool:
        """Remove a save's primary file and sidecar.

        Returns:
            True if the primary file is gone afterwards, False otherwise
        """
        primary = self.save_dir / record.primary_filename
        try:
            self._discard(primary)
        except FileNotFoundError:
            logger.debug("save_already_removed", identifier=record.id)
        except OSError:
            logger.warning(
                "save_removal_failed",
                identifier=record.id,
                path=str(primary),
                exc_info=True,
            )
            return False

        sidecar = self.save_dir / record.sidecar_filename
        try:
            self._discard(sidecar)
        except OSError:
            # Sidecars are optional and often absent
            pass

        logger.info(
            "save_recycled" if self.recycles else "save_deleted",
            identifier=record.id,
        )
        return True

    def _discard(self, path: Path) -> None:
        if self.recycle_dir is None:
            path.unlink()
            return

        if not path.exists():
            raise FileNotFoundError(path)
        self.recycle_dir.mkdir(parents=True, exist_ok=True)
        os.replace(path, self.recycle_dir / path.name)
