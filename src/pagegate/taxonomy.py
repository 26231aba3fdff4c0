"""Document-type taxonomy.

A taxonomy lists the document types the classifier may return and, per type,
the data elements expected in it with the action to take on each (extract,
redact, both, ignore). Taxonomies are YAML or JSON files; packaged builtins
live under ``pagegate/data/taxonomies`` and are selected by name, e.g.
``RunConfig.taxonomy_path = "default"``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import orjson
import regex as re
import yaml

from .interfaces import TaxonomyService
from .models import FieldAction

_SEP_RE = re.compile(r"[\s_\-]+")


def normalize_label(value: Optional[str]) -> str:
    """Case-fold and treat underscores, dashes and spaces alike."""
    return _SEP_RE.sub(" ", (value or "").strip().lower()).strip()


@dataclass
class DataElementConfig:
    """One element expected in a document type."""

    id: str
    name: str
    type: str = "Text"
    category: str = "General"
    action: FieldAction = FieldAction.EXTRACT
    required: bool = False
    pattern: Optional[str] = None
    description: Optional[str] = None

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "DataElementConfig":
        name = str(data.get("name") or data.get("id") or "")
        return DataElementConfig(
            id=str(data.get("id") or normalize_label(name).replace(" ", "_")),
            name=name,
            type=data.get("type", "Text"),
            category=data.get("category", "General"),
            action=FieldAction(data.get("action", FieldAction.EXTRACT.value)),
            required=bool(data.get("required", False)),
            pattern=data.get("pattern"),
            description=data.get("description"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "category": self.category,
            "action": self.action.value,
            "required": self.required,
            "pattern": self.pattern,
            "description": self.description,
        }


@dataclass
class SubTypeConfig:
    id: str
    name: str
    data_elements: List[DataElementConfig] = field(default_factory=list)


@dataclass
class DocumentTypeConfig:
    id: str
    name: str
    description: Optional[str] = None
    data_elements: List[DataElementConfig] = field(default_factory=list)
    sub_types: List[SubTypeConfig] = field(default_factory=list)
    is_active: bool = True
    confidence_threshold: Optional[float] = None

    def matches(self, name: str) -> bool:
        key = normalize_label(name)
        return key in (normalize_label(self.id), normalize_label(self.name))

    def sub_type(self, name: Optional[str]) -> Optional[SubTypeConfig]:
        if not name:
            return None
        key = normalize_label(name)
        for st in self.sub_types:
            if key in (normalize_label(st.id), normalize_label(st.name)):
                return st
        return None


def _elements(raw: Optional[List[Dict[str, Any]]]) -> List[DataElementConfig]:
    return [DataElementConfig.from_dict(e) for e in raw or []]


@dataclass
class Taxonomy(TaxonomyService):
    """Configured document types.

    Attributes
    ----------
    name:
        Identifier of the taxonomy (file stem when loaded from disk).
    document_types:
        Known types; inactive ones are ignored by :meth:`find`.
    metadata:
        Free-form metadata (version, owner, ...).
    """

    name: str = "default"
    document_types: List[DocumentTypeConfig] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def find(self, name: str) -> Optional[DocumentTypeConfig]:
        for dt in self.document_types:
            if dt.is_active and dt.matches(name):
                return dt
        return None

    def expected_elements(
        self, document_type_id: str, sub_type: Optional[str] = None
    ) -> List[DataElementConfig]:
        """Elements of the type, plus those of the sub-type when one matches."""
        dt = self.find(document_type_id)
        if dt is None:
            return []
        elements = list(dt.data_elements)
        st = dt.sub_type(sub_type)
        if st is not None:
            seen = {normalize_label(e.name) for e in elements}
            elements.extend(e for e in st.data_elements if normalize_label(e.name) not in seen)
        return elements

    def threshold_for(self, document_type_id: str, default: float) -> float:
        dt = self.find(document_type_id)
        if dt is not None and dt.confidence_threshold is not None:
            return float(dt.confidence_threshold)
        return default

    def type_names(self) -> List[str]:
        return [dt.name for dt in self.document_types if dt.is_active]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "metadata": self.metadata,
            "document_types": [
                {
                    "id": dt.id,
                    "name": dt.name,
                    "description": dt.description,
                    "is_active": dt.is_active,
                    "confidence_threshold": dt.confidence_threshold,
                    "data_elements": [e.to_dict() for e in dt.data_elements],
                    "sub_types": [
                        {
                            "id": st.id,
                            "name": st.name,
                            "data_elements": [e.to_dict() for e in st.data_elements],
                        }
                        for st in dt.sub_types
                    ],
                }
                for dt in self.document_types
            ],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any], name: str = "default") -> "Taxonomy":
        types: List[DocumentTypeConfig] = []
        for raw in data.get("document_types", []):
            threshold = raw.get("confidence_threshold")
            types.append(
                DocumentTypeConfig(
                    id=str(raw.get("id") or raw["name"]),
                    name=str(raw.get("name") or raw["id"]),
                    description=raw.get("description"),
                    data_elements=_elements(raw.get("data_elements")),
                    sub_types=[
                        SubTypeConfig(
                            id=str(st.get("id") or st["name"]),
                            name=str(st.get("name") or st["id"]),
                            data_elements=_elements(st.get("data_elements")),
                        )
                        for st in raw.get("sub_types", [])
                    ],
                    is_active=bool(raw.get("is_active", True)),
                    confidence_threshold=None if threshold is None else float(threshold),
                )
            )
        return Taxonomy(
            name=data.get("name", name),
            document_types=types,
            metadata=data.get("metadata", {}),
        )

    @staticmethod
    def from_file(path: Union[str, Path, Traversable]) -> "Taxonomy":
        if isinstance(path, Traversable):
            text = path.read_text(encoding="utf-8")
            stem = Path(path.name).stem
            suffix = Path(path.name).suffix.lower()
        else:
            p = Path(path)
            if not p.exists():
                raise FileNotFoundError(f"Taxonomy file not found: {path}")
            text = p.read_text(encoding="utf-8")
            stem = p.stem
            suffix = p.suffix.lower()
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        else:
            data = orjson.loads(text)
        return Taxonomy.from_dict(data, name=stem)


def find_builtin_taxonomy(name: str) -> Optional[Traversable]:
    """Locate a packaged builtin taxonomy by name."""
    ref = resources.files("pagegate.data").joinpath("taxonomies", f"{name}.yaml")
    if ref.is_file():
        return ref
    return None


def load_taxonomy(ref: Optional[str] = None) -> Taxonomy:
    """Load a taxonomy from a file path or builtin name (``default`` if empty)."""
    ref = ref or "default"
    path = Path(ref)
    if path.exists():
        return Taxonomy.from_file(path)
    found = find_builtin_taxonomy(ref)
    if found is None:
        raise FileNotFoundError(f"Taxonomy not found: {ref}")
    return Taxonomy.from_file(found)


__all__ = [
    "DataElementConfig",
    "DocumentTypeConfig",
    "SubTypeConfig",
    "Taxonomy",
    "find_builtin_taxonomy",
    "load_taxonomy",
    "normalize_label",
]
