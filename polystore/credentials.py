"""
Backend credentials.

Supplied once when a provider is registered and immutable afterwards. Network
adapters use address/port/username/password/database; the JSON file store and
SQLite use ``file_repository``.
"""

import json
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .domain.exceptions import ValidationException
from .logging_config import get_logger

logger = get_logger(__name__)


class Credentials(BaseModel):
    """
    Connection parameters for one backend instance.

    Attributes:
        address: Host name or IP address
        port: TCP port, -1 when not applicable
        username: User name, empty for anonymous access
        password: Password, empty for anonymous access
        database: Database / catalog name (Redis: numeric db index)
        file_repository: Directory (JSON store) or database file (SQLite)
    """

    model_config = ConfigDict(frozen=True)

    address: str = Field(default="localhost")
    port: int = Field(default=-1, ge=-1, le=65535)
    username: str = Field(default="")
    password: str = Field(default="", repr=False)
    database: str = Field(default="")
    file_repository: str = Field(default="polystore-data")

    @property
    def has_auth(self) -> bool:
        return bool(self.username or self.password)

    def port_or(self, default: int) -> int:
        return self.port if self.port > 0 else default

    def save(self, path: Union[str, Path]) -> None:
        """Write the credentials to ``path`` as JSON."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.model_dump(), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Credentials":
        """
        Read credentials from a JSON file.

        Raises:
            ValidationException: If the file is not valid JSON or has bad fields
            FileNotFoundError: If the file does not exist
        """
        raw = Path(path).read_text(encoding="utf-8")
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise ValidationException("credentials", str(path), str(e)) from e

    @classmethod
    def load_or_create(cls, path: Union[str, Path], **defaults: Any) -> "Credentials":
        """
        Load credentials from ``path``, writing them from ``defaults`` first if
        the file does not exist yet.

        Args:
            path: Credentials file location
            **defaults: Field values used when the file is created

        Returns:
            Credentials read from (or just written to) the file
        """
        target = Path(path)
        if not target.exists():
            credentials = cls(**defaults)
            credentials.save(target)
            logger.info("credentials_file_created", path=str(target))
            return credentials
        return cls.load(target)
