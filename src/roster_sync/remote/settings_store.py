"""Per-section settings collaborator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from roster_sync.domain.models import Section
from roster_sync.remote.base import SETTINGS, RemoteStore

DEFAULT_SETTINGS: dict[str, Any] = {"meeting_day": 5}


def default_settings() -> dict[str, Any]:
    return dict(DEFAULT_SETTINGS)


def settings_row(section: Section, blob: dict[str, Any]) -> dict[str, Any]:
    return {"id": section.value, "data": dict(blob)}


class SettingsStore(ABC):
    @abstractmethod
    async def get(self, section: Section) -> dict[str, Any]:
        ...

    @abstractmethod
    async def set(self, section: Section, blob: dict[str, Any]) -> None:
        ...


class RemoteSettingsStore(SettingsStore):
    """Settings kept as one ``settings`` row per section, ``id`` = section name."""

    def __init__(self, remote: RemoteStore) -> None:
        self._remote = remote

    async def get(self, section: Section) -> dict[str, Any]:
        row = await self._remote.select_one(SETTINGS, section.value)
        if not row or not isinstance(row.get("data"), dict):
            return default_settings()
        return {**DEFAULT_SETTINGS, **row["data"]}

    async def set(self, section: Section, blob: dict[str, Any]) -> None:
        await self._remote.upsert(SETTINGS, settings_row(section, blob))
