"""
MODULE OVERVIEW:
Storage for the access/refresh token pair.

WHAT IS HAPPENING HERE:
The HTTP client, the refresh coordinator and the socket session all receive the
same TokenStore instance instead of reaching for a global. Tests hand them an
InMemoryTokenStore; the CLI hands them a FileTokenStore so a login survives
between runs.
"""
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from scriptstream.shared.config import settings
from scriptstream.shared.models import TokenPair


class TokenStore(ABC):
    @abstractmethod
    def get(self) -> TokenPair | None:
        pass

    @abstractmethod
    def set(self, pair: TokenPair) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @property
    def access_token(self) -> str | None:
        pair = self.get()
        return pair.access_token if pair else None

    @property
    def refresh_token(self) -> str | None:
        pair = self.get()
        return pair.refresh_token if pair else None


class InMemoryTokenStore(TokenStore):
    def __init__(self, pair: TokenPair | None = None):
        self._pair = pair

    def get(self) -> TokenPair | None:
        return self._pair

    def set(self, pair: TokenPair) -> None:
        self._pair = pair

    def clear(self) -> None:
        self._pair = None


class FileTokenStore(TokenStore):
    """
    Persists the pair as JSON with owner-only permissions.
    Writes go to a temp file in the same directory and are swapped in with
    os.replace, so a crash mid-write never leaves a half-written pair on disk.
    """

    def __init__(self, token_file: str | Path | None = None):
        self.token_file = Path(token_file or settings.TOKEN_FILE).expanduser()
        self._pair: TokenPair | None = None
        self._loaded = False

    def _ensure_directory(self) -> None:
        self.token_file.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> TokenPair | None:
        if not self.token_file.exists():
            return None
        try:
            return TokenPair.model_validate(json.loads(self.token_file.read_text()))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"token_file={self.token_file} event=load_failed reason='{e}'")
            return None

    def get(self) -> TokenPair | None:
        if not self._loaded:
            self._pair = self._load()
            self._loaded = True
        return self._pair

    def set(self, pair: TokenPair) -> None:
        self._ensure_directory()
        fd, tmp_path = tempfile.mkstemp(dir=self.token_file.parent, prefix=".tokens-")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(pair.model_dump_json(indent=2))
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.token_file)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        self._pair = pair
        self._loaded = True
        logger.debug(f"token_file={self.token_file} event=saved")

    def clear(self) -> None:
        self._pair = None
        self._loaded = True
        try:
            self.token_file.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"token_file={self.token_file} event=clear_failed reason='{e}'")
            return
        logger.info(f"token_file={self.token_file} event=cleared")
