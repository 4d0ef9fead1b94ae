"""
Expert knowledge base for XRay Report Assistant.

Stores named knowledge entries that are injected into every analysis
prompt. Persistence is pluggable: the store is handed a persistence port
at construction, loads from it once, and rewrites the full state after
every mutation.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4

from pydantic import ValidationError as SchemaValidationError

from app.config import settings
from app.core.exceptions import PersistenceError, ValidationError
from app.models.schemas import KnowledgeItem
from app.utils.logger import get_logger

logger = get_logger("knowledge_store")

SYNTHESIZED_NAME_LENGTH = 40

KNOWLEDGE_TEMPLATES: Dict[str, Dict[str, str]] = {
    "multiple_myeloma": {
        "name": "Radiopaedia Quick-Note: Multiple Myeloma",
        "content": (
            "Radiological Signs of Multiple Myeloma: Look for multiple, small, "
            "well-defined 'punched-out' lytic lesions, particularly in the axial "
            "skeleton (skull, spine, ribs, pelvis). Check for raindrop skull "
            "appearance. Be aware of diffuse osteopenia and potential for "
            "pathological vertebral fractures/collapse. Periosteal reaction is "
            "typically absent. A solitary, expansile 'soap bubble' lesion may "
            "represent a plasmacytoma."
        ),
    },
}

_DIGITS = re.compile(r"(\d+)")


def natural_sort_key(name: str) -> List[Any]:
    """Case-insensitive key that orders embedded numbers numerically."""
    # re.split with a capture group puts the matched digit runs at odd indices
    return [
        (0, int(chunk), "") if index % 2 else (1, 0, chunk.casefold())
        for index, chunk in enumerate(_DIGITS.split(name))
        if chunk
    ]


def synthesize_name(content: str) -> str:
    """Derive a label from the first characters of the content."""
    return f"{content.strip()[:SYNTHESIZED_NAME_LENGTH]}..."


# =============================================================================
# Persistence ports
# =============================================================================

class KnowledgePersistence(Protocol):
    """Durable slot holding the serialized knowledge list."""

    def load(self) -> List[Dict[str, Any]]: ...

    def save(self, items: List[Dict[str, Any]]) -> None: ...


class InMemoryPersistence:
    """Process-local persistence, used for tests and ephemeral runs."""

    def __init__(self, items: Optional[List[Dict[str, Any]]] = None):
        self.items = list(items or [])
        self.save_count = 0

    def load(self) -> List[Dict[str, Any]]:
        return [dict(item) for item in self.items]

    def save(self, items: List[Dict[str, Any]]) -> None:
        self.items = [dict(item) for item in items]
        self.save_count += 1


class JsonFilePersistence:
    """
    JSON file persistence keyed like a browser storage slot.

    The file holds ``{key: [items...]}`` so several slots can share it.
    """

    def __init__(self, path: Optional[Path] = None, key: Optional[str] = None):
        self.path = Path(path) if path is not None else settings.knowledge_path
        self.key = key or settings.knowledge_store_key

    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read knowledge base: {e}") from e
        if not isinstance(document, dict):
            raise PersistenceError("Knowledge base file is not a JSON object")
        return document

    def load(self) -> List[Dict[str, Any]]:
        items = self._read_document().get(self.key, [])
        if not isinstance(items, list):
            raise PersistenceError(f"Knowledge slot '{self.key}' is not a list")
        return items

    def save(self, items: List[Dict[str, Any]]) -> None:
        try:
            document = self._read_document()
        except PersistenceError:
            document = {}
        document[self.key] = items
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as e:
            raise PersistenceError(f"Failed to write knowledge base: {e}") from e


# =============================================================================
# Store
# =============================================================================

class KnowledgeStore:
    """
    In-memory knowledge items backed by a persistence port.

    Items are unique by trimmed content. In-memory state is the source of
    truth: when a write fails the mutation is kept and PersistenceError is
    raised to let the caller warn the user.
    """

    def __init__(self, persistence: KnowledgePersistence):
        self.persistence = persistence
        self._items: List[KnowledgeItem] = self._load()

    def _load(self) -> List[KnowledgeItem]:
        try:
            raw_items = self.persistence.load()
            items = [KnowledgeItem.model_validate(raw) for raw in raw_items]
        except (PersistenceError, SchemaValidationError, TypeError) as e:
            logger.error("Failed to load knowledge base, starting empty", error=str(e))
            return []
        logger.info("Knowledge base loaded", count=len(items))
        return items

    def _persist(self) -> None:
        self.persistence.save([item.model_dump() for item in self._items])

    def list(self) -> List[KnowledgeItem]:
        """All items sorted by name (case-insensitive, numeric-aware)."""
        return sorted(self._items, key=lambda item: natural_sort_key(item.name))

    def get(self, item_id: str) -> Optional[KnowledgeItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def add(self, name: str, content: str) -> Optional[KnowledgeItem]:
        """
        Add a knowledge item.

        Returns:
            The new item, or None if content was empty or already present
        """
        content = content.strip()
        if not content:
            return None
        if any(item.content.strip() == content for item in self._items):
            logger.info("Duplicate knowledge ignored")
            return None

        item = KnowledgeItem(
            id=str(uuid4()),
            name=name.strip() or synthesize_name(content),
            content=content
        )
        self._items.append(item)
        logger.info("Knowledge added", item_id=item.id, name=item.name)
        self._persist()
        return item

    def add_template(self, key: str) -> Optional[KnowledgeItem]:
        """Add one of the predefined KNOWLEDGE_TEMPLATES by key."""
        template = KNOWLEDGE_TEMPLATES.get(key)
        if template is None:
            raise ValidationError(f"Unknown knowledge template: {key}")
        return self.add(template["name"], template["content"])

    def update(self, item_id: str, name: str, content: str) -> Optional[KnowledgeItem]:
        """
        Replace name and content of an item, keeping its id and position.

        Returns:
            The updated item, or None if content was empty, already held
            by another item, or the id is unknown
        """
        content = content.strip()
        if not content:
            return None
        if any(item.id != item_id and item.content.strip() == content for item in self._items):
            logger.info("Update would duplicate existing knowledge", item_id=item_id)
            return None

        for index, item in enumerate(self._items):
            if item.id == item_id:
                updated = item.model_copy(update={
                    "name": name.strip() or synthesize_name(content),
                    "content": content
                })
                self._items[index] = updated
                logger.info("Knowledge updated", item_id=item_id)
                self._persist()
                return updated
        return None

    def remove(self, item_id: str) -> bool:
        """Delete an item by id. Unknown ids are ignored."""
        remaining = [item for item in self._items if item.id != item_id]
        if len(remaining) == len(self._items):
            return False
        self._items = remaining
        logger.info("Knowledge removed", item_id=item_id)
        self._persist()
        return True

    def __len__(self) -> int:
        return len(self._items)
