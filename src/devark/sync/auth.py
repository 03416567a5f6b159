"""Backend API token storage."""

import logging
import os
from pathlib import Path

from ..config import get_token_path

logger = logging.getLogger(__name__)


class TokenStore:
    """Keeps the token in a single user-readable file in the data dir."""

    def __init__(self, path: Path | None = None):
        self.path = path or get_token_path()

    def get(self) -> str | None:
        env = os.environ.get("DEVARK_TOKEN")
        if env:
            return env.strip()
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot read token file %s: %s", self.path, e)
            return None
        return token or None

    def set(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token.strip(), encoding="utf-8")
        try:
            self.path.chmod(0o600)
        except OSError as e:
            logger.debug("Cannot restrict permissions on %s: %s", self.path, e)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
