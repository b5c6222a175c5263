"""Save directory scanner.

Lists the manual saves present in the save directory and parses them into
records. Only ``Save*.ess`` files are considered; autosaves, quicksaves and
anything else in the directory are never handed to the retention engine.
"""

from pathlib import Path

import structlog

from savekeeper.common.models import SAVE_EXTENSION, SaveRecord, is_save_identifier

logger = structlog.get_logger()


class SaveDirectoryScanner:
    """Enumerates save identifiers in one directory.

    Parsing problems are reported through ``log`` (the module logger by
    default); they never stop the scan.
    """

    def __init__(self, save_dir: Path, log=None):
        """Initialize the scanner.

        Args:
            save_dir: Directory holding the save files
            log: structlog logger for diagnostics (default: module logger)
        """
        self.save_dir = Path(save_dir)
        self._log = log if log is not None else logger

    def list_identifiers(self) -> list[str]:
        """Return the identifiers of all manual saves, sorted by name.

        A missing or unreadable directory yields an empty list.
        """
        try:
            entries = list(self.save_dir.iterdir())
        except FileNotFoundError:
            self._log.warning("save_dir_missing", save_dir=str(self.save_dir))
            return []
        except OSError:
            self._log.warning(
                "save_dir_unreadable", save_dir=str(self.save_dir), exc_info=True
            )
            return []

        identifiers = []
        for path in entries:
            if path.suffix != SAVE_EXTENSION or not is_save_identifier(path.stem):
                continue
            try:
                if not path.is_file():
                    continue
            except OSError:
                continue
            identifiers.append(path.stem)

        return sorted(identifiers)

    def discover(self) -> list[SaveRecord]:
        """Parse every manual save in the directory into a record."""
        records = []
        for identifier in self.list_identifiers():
            record = SaveRecord.parse(identifier)
            if record.diagnostics:
                self._log.warning(
                    "save_identifier_malformed",
                    identifier=identifier,
                    problems=list(record.diagnostics),
                )
            records.append(record)

        self._log.debug(
            "save_dir_scanned", save_dir=str(self.save_dir), records=len(records)
        )
        return records
