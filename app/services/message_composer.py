"""
Message composer - loads outbound copy from YAML and renders it.

Copy lives in app/copy/messages.yml; templates use str.format placeholders.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

COPY_DIR = Path(__file__).resolve().parent.parent / "copy"
MESSAGES_FILE = "messages.yml"


class MessageComposer:
    """Renders messages from a YAML copy file."""

    def __init__(self, copy_file: Path | None = None):
        self.copy_file = copy_file or COPY_DIR / MESSAGES_FILE
        self._copy_data: dict[str, Any] = {}
        self._load_copy()

    def _load_copy(self) -> None:
        if not self.copy_file.exists():
            logger.warning(f"Copy file not found: {self.copy_file}, using empty copy")
            return
        with open(self.copy_file, encoding="utf-8") as f:
            self._copy_data = yaml.safe_load(f) or {}
        logger.info(f"Loaded copy from {self.copy_file}")

    def render(self, key: str, **kwargs: Any) -> str:
        """
        Render a message from copy.

        Example:
            composer.render("offer_dm", affiliate_link="https://...", install_url="https://...")
        """
        template = self._copy_data.get(key)
        if template is None:
            logger.warning(f"Message key not found: {key}")
            return f"[MISSING: {key}]"
        try:
            return str(template).format(**kwargs)
        except KeyError as e:
            logger.warning(f"Missing template variable {e} for key {key}")
            return str(template)


_composer: MessageComposer | None = None


def reset_cache() -> None:
    """Drop the cached composer (tests that swap COPY_DIR call this)."""
    global _composer
    _composer = None


def get_composer() -> MessageComposer:
    global _composer
    if _composer is None:
        _composer = MessageComposer()
    return _composer


def render_message(key: str, **kwargs: Any) -> str:
    return get_composer().render(key, **kwargs)
