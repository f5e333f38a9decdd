"""Secret storage for OAuth credentials."""

import json
import logging
import os
from pathlib import Path
from typing import Protocol

import aiofiles

logger = logging.getLogger(__name__)

SECRETS_FILE = "secrets.json"


class SecretStore(Protocol):
    """Secure key-value store holding serialized credentials."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


def _get_secrets_path() -> Path:
    """Get the path to the secrets file.

    Uses XDG_DATA_HOME if set, otherwise ~/.local/share/pkcesession/secrets.json
    """
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        base = Path(xdg_data)
    else:
        base = Path.home() / ".local" / "share"
    return base / "pkcesession" / SECRETS_FILE


class FileSecretStore:
    """Secret store backed by a single JSON file with owner-only permissions."""

    def __init__(self, path: Path | None = None):
        self.path = path or _get_secrets_path()

    async def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            async with aiofiles.open(self.path) as f:
                content = await f.read()
            data = json.loads(content)
        except (OSError, ValueError) as e:
            logger.warning("Failed to read secrets from %s: %s", self.path, e)
            return {}

        if not isinstance(data, dict):
            logger.warning("Ignoring malformed secrets file %s", self.path)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    async def _write_all(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        # Write to temp file first for atomic operation
        temp_path = self.path.with_suffix(".tmp")
        async with aiofiles.open(temp_path, "w") as f:
            await f.write(json.dumps(data, indent=2))

        # Set restrictive permissions before rename
        temp_path.chmod(0o600)
        temp_path.rename(self.path)

    async def get(self, key: str) -> str | None:
        data = await self._read_all()
        return data.get(key)

    async def set(self, key: str, value: str) -> None:
        data = await self._read_all()
        data[key] = value
        await self._write_all(data)

    async def delete(self, key: str) -> None:
        data = await self._read_all()
        if data.pop(key, None) is not None:
            await self._write_all(data)


class MemorySecretStore:
    """Process-local secret store for hosts without durable storage."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
