"""
Provider Store module for persistent provider configurations.

Layout under the store root:

    providers/builtin/<slug>.json   shipped, read-only
    providers/custom/<slug>.json    user-writable
    active-providers.json           {"animeProvider": ..., "mangaProvider": ...}

Reads never raise: a missing or corrupt file is treated as "not found".
The active-provider pointer is loaded once per store instance and all
access to it is serialized by an asyncio lock.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

from .audit_logger import AuditLogger, ComponentLogging
from .enums import ErrorCode, ProviderType
from .exceptions import ConfigurationError, PersistenceError
from .models import ActiveProviders, ProviderInfo
from .provider_config import DynamicProviderConfig, normalize_slug


class ProviderStore(ComponentLogging):
    """
    File-backed storage for provider configurations.

    Custom configurations shadow built-in ones with the same slug.
    """

    COMPONENT = "ProviderStore"

    ACTIVE_FILE_NAME = "active-providers.json"

    def __init__(self, root_dir: Path, logger: Optional[AuditLogger] = None) -> None:
        """
        Initialize the store, creating its directories if needed.

        Args:
            root_dir: Store root directory
            logger: Optional audit logger
        """
        self._root_dir = Path(root_dir)
        self._builtin_dir = self._root_dir / "providers" / "builtin"
        self._custom_dir = self._root_dir / "providers" / "custom"
        self._active_file = self._root_dir / self.ACTIVE_FILE_NAME
        self._logger = logger

        self._active: Optional[ActiveProviders] = None
        self._lock = asyncio.Lock()

        self._builtin_dir.mkdir(parents=True, exist_ok=True)
        self._custom_dir.mkdir(parents=True, exist_ok=True)

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    @property
    def builtin_dir(self) -> Path:
        return self._builtin_dir

    @property
    def custom_dir(self) -> Path:
        return self._custom_dir

    @staticmethod
    def _provider_path(directory: Path, slug: str) -> Optional[Path]:
        """The file for ``slug`` inside ``directory``, or None if the slug has no usable file name."""
        normalized = normalize_slug(slug)
        if not normalized:
            return None
        path = directory / f"{normalized}.json"
        if path.resolve().parent != directory.resolve():
            return None
        return path

    def _custom_path(self, slug: str) -> Optional[Path]:
        return self._provider_path(self._custom_dir, slug)

    def _builtin_path(self, slug: str) -> Optional[Path]:
        return self._provider_path(self._builtin_dir, slug)

    @staticmethod
    def _is_file(path: Optional[Path]) -> bool:
        return path is not None and path.exists()

    def _load_file(self, path: Optional[Path], is_built_in: bool) -> Optional[DynamicProviderConfig]:
        if not self._is_file(path):
            return None
        try:
            text = path.read_text(encoding="utf-8")
            config = DynamicProviderConfig.from_json(text)
        except (OSError, ConfigurationError) as e:
            self._log_warn(
                "Skipping unreadable provider file",
                {"file_path": str(path), "error": str(e)},
            )
            return None
        return config.with_changes(is_built_in=is_built_in)

    def _load_dir(self, directory: Path, is_built_in: bool) -> list[DynamicProviderConfig]:
        configs = []
        for path in sorted(directory.glob("*.json")):
            config = self._load_file(path, is_built_in)
            if config is not None:
                configs.append(config)
        return configs

    async def _get_active_locked(self) -> ActiveProviders:
        # Caller holds self._lock
        if self._active is None:
            self._active = self._read_active_file()
        return self._active

    def _read_active_file(self) -> ActiveProviders:
        if not self._active_file.exists():
            return ActiveProviders()
        try:
            with open(self._active_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            self._log_warn(
                "Active provider file is corrupt, resetting pointers",
                {"file_path": str(self._active_file), "error": str(e)},
            )
            return ActiveProviders()
        if not isinstance(data, dict):
            return ActiveProviders()
        return ActiveProviders.from_dict(data)

    def _write_active_file(self, active: ActiveProviders) -> None:
        try:
            with open(self._active_file, "w", encoding="utf-8") as f:
                json.dump(active.to_dict(), f, indent=2)
        except OSError as e:
            raise PersistenceError(
                code=ErrorCode.IO_ERROR.value,
                message=f"Failed to write active provider file: {e}",
                details={"file_path": str(self._active_file)},
            )

    async def list(self) -> list[ProviderInfo]:
        """
        List every stored provider, built-in and custom, sorted by name.

        A custom provider shadows a built-in one with the same slug.
        """
        async with self._lock:
            active = await self._get_active_locked()

        by_slug: dict[str, DynamicProviderConfig] = {}
        for config in self._load_dir(self._builtin_dir, is_built_in=True):
            by_slug[config.slug] = config
        for config in self._load_dir(self._custom_dir, is_built_in=False):
            by_slug[config.slug] = config

        active_slugs = {active.anime_provider, active.manga_provider}
        infos = [
            ProviderInfo.from_config(config, is_active=config.slug in active_slugs)
            for config in by_slug.values()
        ]
        return sorted(infos, key=lambda info: info.name.lower())

    async def get(self, slug: str) -> Optional[DynamicProviderConfig]:
        """
        Get a provider by slug.

        Returns:
            The config (custom first, then built-in), or None if not found
        """
        config = self._load_file(self._custom_path(slug), is_built_in=False)
        if config is not None:
            return config
        return self._load_file(self._builtin_path(slug), is_built_in=True)

    async def exists(self, slug: str) -> bool:
        return self._is_file(self._custom_path(slug)) or self._is_file(self._builtin_path(slug))

    async def save(self, config: DynamicProviderConfig) -> Path:
        """
        Save a provider to the custom directory.

        Returns:
            The path written

        Raises:
            PersistenceError: If the slug has no usable file name or the file cannot be written
        """
        path = self._custom_path(config.slug)
        if path is None:
            raise PersistenceError(
                code=ErrorCode.INVALID_CONFIG.value,
                message=f"Provider slug '{config.slug}' is not a valid file name",
                details={"slug": config.slug},
            )
        config = config.with_changes(slug=path.stem)
        try:
            path.write_text(config.to_json(), encoding="utf-8")
        except OSError as e:
            raise PersistenceError(
                code=ErrorCode.IO_ERROR.value,
                message=f"Failed to write provider file: {e}",
                details={"slug": config.slug, "file_path": str(path)},
            )
        self._log_info("Saved provider", {"slug": config.slug, "file_path": str(path)})
        return path

    async def delete(self, slug: str) -> bool:
        """
        Delete a custom provider.

        Built-in providers cannot be deleted. An active pointer to the deleted
        slug is cleared.

        Returns:
            True if a file was removed
        """
        path = self._custom_path(slug)
        if not self._is_file(path):
            if self._is_file(self._builtin_path(slug)):
                self._log_warn("Refusing to delete built-in provider", {"slug": slug})
            return False

        try:
            path.unlink()
        except OSError as e:
            raise PersistenceError(
                code=ErrorCode.IO_ERROR.value,
                message=f"Failed to delete provider file: {e}",
                details={"slug": slug, "file_path": str(path)},
            )

        normalized = normalize_slug(slug)
        async with self._lock:
            active = await self._get_active_locked()
            if normalized in (active.anime_provider, active.manga_provider):
                if active.anime_provider == normalized:
                    active.anime_provider = None
                if active.manga_provider == normalized:
                    active.manga_provider = None
                self._write_active_file(active)

        self._log_info("Deleted provider", {"slug": slug})
        return True

    async def set_active(self, slug: str, provider_type: ProviderType) -> None:
        """
        Point the given content type at a provider.

        ``ProviderType.BOTH`` sets both the anime and the manga pointer.

        Raises:
            PersistenceError: If the provider does not exist or the pointer cannot be written
        """
        if not await self.exists(slug):
            raise PersistenceError(
                code=ErrorCode.NOT_FOUND.value,
                message=f"Provider '{slug}' not found",
                details={"slug": slug},
            )

        normalized = normalize_slug(slug)
        async with self._lock:
            active = await self._get_active_locked()
            if provider_type in (ProviderType.ANIME, ProviderType.BOTH):
                active.anime_provider = normalized
            if provider_type in (ProviderType.MANGA, ProviderType.BOTH):
                active.manga_provider = normalized
            self._write_active_file(active)

        self._log_info(
            "Active provider changed",
            {"slug": normalized, "type": provider_type.value},
        )

    async def get_active(self, provider_type: ProviderType) -> Optional[DynamicProviderConfig]:
        """
        Get the active provider for a content type.

        For ``ProviderType.BOTH`` the anime pointer is consulted first.
        """
        async with self._lock:
            active = await self._get_active_locked()
            if provider_type == ProviderType.MANGA:
                slug = active.manga_provider
            elif provider_type == ProviderType.ANIME:
                slug = active.anime_provider
            else:
                slug = active.anime_provider or active.manga_provider

        if not slug:
            return None
        return await self.get(slug)

    async def get_active_pointers(self) -> ActiveProviders:
        async with self._lock:
            active = await self._get_active_locked()
            return ActiveProviders(
                anime_provider=active.anime_provider,
                manga_provider=active.manga_provider,
            )

    async def export(self, slug: str) -> str:
        """
        Export a provider as JSON text.

        Raises:
            PersistenceError: If the provider does not exist
        """
        config = await self.get(slug)
        if config is None:
            raise PersistenceError(
                code=ErrorCode.NOT_FOUND.value,
                message=f"Provider '{slug}' not found",
                details={"slug": slug},
            )
        return config.to_json()

    async def import_config(self, json_text: str) -> DynamicProviderConfig:
        """
        Parse a provider from JSON text without saving it.

        Raises:
            ConfigurationError: If the text is not a valid provider configuration
        """
        config = DynamicProviderConfig.from_json(json_text)
        slug = normalize_slug(config.slug)
        if not slug:
            raise ConfigurationError(
                code=ErrorCode.INVALID_CONFIG.value,
                message=f"Provider slug '{config.slug}' has no usable characters",
                details={"slug": config.slug},
            )
        return config.with_changes(slug=slug)
