"""Recently used study materials, newest first, kept per user."""
import json
import logging
import time
import uuid
from dataclasses import asdict
from typing import List

from study_helper.db.queries import get_user_value, set_user_value
from study_helper.models import SavedMaterial

logger = logging.getLogger(__name__)

STORAGE_KEY = "saved_materials"
MAX_SAVED_ITEMS = 10
MATERIAL_TYPES = ("file", "text")


class MaterialCache:
    """Bounded list of a user's materials stored as one JSON value.

    Writes replace the whole list, so two concurrent writers race and the
    last one wins.
    """

    def __init__(self, user_id: int, capacity: int = MAX_SAVED_ITEMS):
        self.user_id = user_id
        self.capacity = capacity

    async def load(self) -> List[SavedMaterial]:
        """Return the stored list, or an empty list if absent or corrupt."""
        raw = await get_user_value(self.user_id, STORAGE_KEY)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            return [SavedMaterial(**item) for item in items]
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Failed to parse stored materials for user %d: %s", self.user_id, e)
            return []

    async def save(self, content: str, name: str, type: str) -> SavedMaterial:
        """Prepend a new material and drop everything past capacity."""
        if type not in MATERIAL_TYPES:
            raise ValueError(f"Unknown material type: {type}")

        material = SavedMaterial(
            id=str(uuid.uuid4()),
            name=name or "Untitled Note",
            content=content,
            timestamp=int(time.time() * 1000),
            type=type,
        )
        materials = [material, *await self.load()][: self.capacity]
        await self._persist(materials)
        return material

    async def delete(self, material_id: str) -> None:
        """Remove a material by id. Unknown ids are ignored."""
        materials = await self.load()
        remaining = [m for m in materials if m.id != material_id]
        if len(remaining) != len(materials):
            await self._persist(remaining)

    async def get(self, material_id: str) -> SavedMaterial | None:
        for material in await self.load():
            if material.id == material_id:
                return material
        return None

    async def _persist(self, materials: List[SavedMaterial]) -> None:
        payload = json.dumps([asdict(m) for m in materials], ensure_ascii=False)
        await set_user_value(self.user_id, STORAGE_KEY, payload)


def name_for_pasted_text(text: str) -> str:
    """Label pasted text by its first 30 characters."""
    name = text[:30].strip()
    return name + ("..." if len(text) > 30 else "")
