"""Single-record credential persistence.

The credential file holds one ``CredentialRecord`` as JSON.  A missing file
means "never authenticated"; an unreadable or invalid file is logged and
treated the same way.
"""

from __future__ import annotations

import os
from pathlib import Path

import structlog
from pydantic import ValidationError

from mailbridge.auth.models import CredentialRecord

logger = structlog.get_logger()


class CredentialStore:
    """Load and overwrite the credential record at ``path``."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> CredentialRecord | None:
        """Return the stored record, or ``None`` when there is no usable one."""
        if not self._path.exists():
            return None
        try:
            return CredentialRecord.model_validate_json(self._path.read_text(encoding="utf-8"))
        except OSError as exc:
            logger.warning("credential_file_unreadable", path=str(self._path), error=str(exc))
        except ValidationError as exc:
            logger.warning(
                "credential_file_invalid",
                path=str(self._path),
                errors=[e["msg"] for e in exc.errors()],
            )
        return None

    def save(self, record: CredentialRecord) -> None:
        """Overwrite the credential file with ``record``.

        The write goes to a sibling temp file first and is then renamed over
        the target, so a crash never leaves a half-written record behind.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, self._path)
        logger.info("credential_saved", path=str(self._path))
