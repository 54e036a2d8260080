"""Diagnostic snapshot and link artifact writers."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from catalog_scraper.config import settings

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d_%H-%M-%S")


class FirstPageSnapshot:
    """
    Saves the first listing page body of a run for offline inspection.

    At most one snapshot is written per instance; write failures are
    logged and never raised.
    """

    def __init__(self, base_path: Optional[str] = None):
        """
        Initialize snapshot writer.

        Args:
            base_path: Directory for snapshots (defaults to config)
        """
        self.base_path = Path(base_path or settings.diagnostics_dir)
        self.saved = False

    def save(self, site: str, body: str, extension: str = "html") -> Optional[Path]:
        """
        Write the snapshot unless one was already written.

        Args:
            site: Site slug, used as sub-directory
            body: Page body
            extension: File extension ("html" or "json")

        Returns:
            Path of the written file, or None when skipped or failed
        """
        if self.saved:
            return None
        self.saved = True

        path = self.base_path / site / f"first-page-{_timestamp()}.{extension}"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(body, encoding="utf-8")
        except OSError as exc:
            logger.warning(f"Could not save first page snapshot to {path}: {exc}")
            return None

        logger.info(f"Saved first page snapshot to {path}")
        return path


def write_link_file(site: str, links: Iterable[str], base_path: Optional[str] = None) -> Optional[Path]:
    """
    Write collected links to a text file, one URL per line.

    Returns:
        Path of the written file, or None when the write failed
    """
    path = Path(base_path or settings.links_dir) / site / f"product-urls-{_timestamp()}.txt"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(links), encoding="utf-8")
    except OSError as exc:
        logger.error(f"Could not write link file {path}: {exc}")
        return None

    logger.info(f"Wrote link file {path}")
    return path
