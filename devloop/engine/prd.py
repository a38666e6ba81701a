"""In-memory PRD set records consumed by the validator.

These records are built from an already-parsed mapping (the output of an
external discovery step); nothing here reads PRD markdown.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


def _optional_text(value: Any) -> str | None:
    """Return a stripped string, or None for missing/blank values."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _id_list(value: Any, field_name: str, *, key: str) -> list[str]:
    """Normalize a dependency list whose items are ids or ``{key: id}`` objects."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"Expected '{field_name}' to be a list.")
    ids: list[str] = []
    for index, item in enumerate(value):
        if isinstance(item, Mapping):
            item = item.get(key)
        text = _optional_text(item)
        if text is None:
            raise ValueError(f"Expected '{field_name}[{index}]' to reference an id.")
        ids.append(text)
    return ids


@dataclass(frozen=True)
class PhaseDefinition:
    """One phase declared in a PRD's requirements section."""

    id: str
    name: str | None = None
    depends_on: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PhaseDefinition:
        """Create a phase from parsed frontmatter; numeric ids are kept as text."""
        phase_id = _optional_text(data.get("id"))
        if phase_id is None:
            raise ValueError("Expected phase 'id' to be present.")
        return cls(
            id=phase_id,
            name=_optional_text(data.get("name")),
            depends_on=tuple(_id_list(data.get("dependsOn"), "dependsOn", key="id")),
        )


@dataclass(frozen=True)
class PrdMetadata:
    """Frontmatter fields of one PRD that the validator inspects.

    Missing required fields are kept as ``None`` so that the validator can
    report them instead of failing at load time.
    """

    id: str | None
    version: str | None
    status: str | None
    parent_prd: str | None = None
    depends_on: tuple[str, ...] = ()
    depended_on_by: tuple[str, ...] = ()
    phases: tuple[PhaseDefinition, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PrdMetadata:
        """Create metadata from a parsed frontmatter mapping.

        Accepts both the nested layout (``prd``, ``relationships``,
        ``requirements.phases``) and a flat layout with the same keys at the
        top level.
        """
        prd = data.get("prd")
        prd_section: Mapping[str, Any] = prd if isinstance(prd, Mapping) else data
        relationships = data.get("relationships")
        rel_section: Mapping[str, Any] = (
            relationships if isinstance(relationships, Mapping) else data
        )
        requirements = data.get("requirements")
        phases_raw = (
            requirements.get("phases") if isinstance(requirements, Mapping) else data.get("phases")
        )
        if phases_raw is None:
            phases_raw = []
        if not isinstance(phases_raw, list):
            raise ValueError("Expected 'requirements.phases' to be a list.")
        return cls(
            id=_optional_text(prd_section.get("id")),
            version=_optional_text(prd_section.get("version")),
            status=_optional_text(prd_section.get("status")),
            parent_prd=_optional_text(prd_section.get("parentPrd")),
            depends_on=tuple(_id_list(rel_section.get("dependsOn"), "dependsOn", key="prd")),
            depended_on_by=tuple(
                _id_list(rel_section.get("dependedOnBy"), "dependedOnBy", key="prd")
            ),
            phases=tuple(PhaseDefinition.from_dict(item) for item in phases_raw),
        )


@dataclass(frozen=True)
class PrdEntry:
    """A PRD located on disk with its parsed metadata."""

    id: str
    path: Path
    metadata: PrdMetadata
    sequence: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, base_dir: Path | None = None) -> PrdEntry:
        """Create an entry; relative paths resolve against ``base_dir``."""
        prd_id = _optional_text(data.get("id"))
        if prd_id is None:
            raise ValueError("Expected PRD entry 'id' to be present.")
        raw_path = _optional_text(data.get("path"))
        if raw_path is None:
            raise ValueError(f"Expected PRD entry '{prd_id}' to declare a path.")
        path = Path(raw_path)
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        sequence_raw = data.get("sequence", 0)
        if isinstance(sequence_raw, bool) or not isinstance(sequence_raw, int):
            raise ValueError(f"Expected PRD entry '{prd_id}' sequence to be an integer.")
        metadata_raw = data.get("metadata") or {}
        if not isinstance(metadata_raw, Mapping):
            raise ValueError(f"Expected PRD entry '{prd_id}' metadata to be an object.")
        return cls(
            id=prd_id,
            path=path,
            metadata=PrdMetadata.from_dict(metadata_raw),
            sequence=sequence_raw,
        )


@dataclass(frozen=True)
class PrdSetManifest:
    """Parent PRD and the child PRDs its index declares."""

    parent: PrdEntry
    children: tuple[PrdEntry, ...] = ()


@dataclass(frozen=True)
class DiscoveredPrdSet:
    """A fully parsed PRD set: manifest plus every PRD taking part in execution."""

    set_id: str
    directory: Path
    manifest: PrdSetManifest
    prds: tuple[PrdEntry, ...] = field(default_factory=tuple)
    index_path: Path | None = None

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], *, base_dir: Path | None = None
    ) -> DiscoveredPrdSet:
        """Create a discovered set from a parsed mapping.

        ``prds`` defaults to the manifest's children when omitted.
        """
        directory_raw = _optional_text(data.get("directory"))
        directory = Path(directory_raw) if directory_raw else (base_dir or Path.cwd())
        if base_dir is not None and not directory.is_absolute():
            directory = base_dir / directory
        manifest_raw = data.get("manifest")
        if not isinstance(manifest_raw, Mapping):
            raise ValueError("Expected 'manifest' to be an object.")
        parent_raw = manifest_raw.get("parent", manifest_raw.get("parentPrd"))
        if not isinstance(parent_raw, Mapping):
            raise ValueError("Expected 'manifest.parent' to be an object.")
        children_raw = manifest_raw.get("children", manifest_raw.get("childPrds")) or []
        if not isinstance(children_raw, list):
            raise ValueError("Expected 'manifest.children' to be a list.")
        parent = PrdEntry.from_dict(parent_raw, base_dir=directory)
        children = tuple(PrdEntry.from_dict(item, base_dir=directory) for item in children_raw)
        prds_raw = data.get("prds")
        if prds_raw is None:
            prds = children
        elif isinstance(prds_raw, list):
            prds = tuple(PrdEntry.from_dict(item, base_dir=directory) for item in prds_raw)
        else:
            raise ValueError("Expected 'prds' to be a list.")
        index_raw = _optional_text(data.get("indexPath", data.get("index_path")))
        set_id = _optional_text(data.get("setId", data.get("set_id"))) or parent.id
        return cls(
            set_id=set_id,
            directory=directory,
            manifest=PrdSetManifest(parent=parent, children=children),
            prds=prds,
            index_path=Path(index_raw) if index_raw else None,
        )
