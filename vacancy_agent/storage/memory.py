"""In-process artifact store, used for dry runs and tests."""

from collections.abc import Iterable
from typing import TypeVar

from pydantic import BaseModel

from vacancy_agent.ports.storage import ArtifactSlot, ArtifactStore

M = TypeVar("M", bound=BaseModel)

# slot -> key -> artifact
SiteArtifacts = dict[ArtifactSlot, dict[str, BaseModel]]


class MemoryArtifactStore(ArtifactStore):
    """Keeps one record of artifacts per site id. Artifacts are frozen, so no copies."""

    def __init__(self) -> None:
        self._sites: dict[str, SiteArtifacts] = {}

    def _load(self, site_id: str, slot: ArtifactSlot, key: str, model: type[M]) -> M | None:
        artifact = self._sites.get(site_id, {}).get(slot, {}).get(key)
        if artifact is None:
            return None
        if not isinstance(artifact, model):
            msg = f"Stored {slot.value} artifact is {type(artifact).__name__}, not {model.__name__}"
            raise TypeError(msg)
        return artifact

    def _store(self, site_id: str, slot: ArtifactSlot, key: str, artifact: BaseModel) -> None:
        self._sites.setdefault(site_id, {}).setdefault(slot, {})[key] = artifact

    def _remove(self, site_id: str, slots: Iterable[ArtifactSlot]) -> None:
        site = self._sites.get(site_id)
        if site is None:
            return
        for slot in slots:
            site.pop(slot, None)
