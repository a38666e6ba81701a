"""Set, PRD and phase level validation gating execution of a PRD set."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from devloop.engine.events import EventStream
from devloop.engine.graph import build_dependency_graph, find_cycle, format_cycle
from devloop.engine.prd import DiscoveredPrdSet, PhaseDefinition, PrdEntry
from devloop.logging_utils import get_logger

LOGGER = get_logger("validator")

SPLIT_STATUS = "split"
REQUIRED_FRONTMATTER = ("id", "version", "status")


@dataclass
class SetLevelValidation:
    """Set-wide checks: cycles, discoverability and parent/child consistency."""

    cycles: bool = False
    discoverability: bool = False
    consistency: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Serialize set-level checks."""
        return {
            "cycles": self.cycles,
            "discoverability": self.discoverability,
            "consistency": self.consistency,
            "errors": list(self.errors),
        }


@dataclass
class PrdLevelValidation:
    """Checks for one PRD's frontmatter, dependencies and phase table."""

    prd_id: str
    frontmatter: bool = False
    dependencies: bool = False
    phases: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Serialize PRD-level checks."""
        return {
            "prd_id": self.prd_id,
            "frontmatter": self.frontmatter,
            "dependencies": self.dependencies,
            "phases": self.phases,
            "errors": list(self.errors),
        }


@dataclass
class PhaseLevelValidation:
    """Dependency resolution for one phase."""

    prd_id: str
    phase_id: str
    dependencies: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Serialize phase-level checks."""
        return {
            "prd_id": self.prd_id,
            "phase_id": self.phase_id,
            "dependencies": self.dependencies,
            "errors": list(self.errors),
        }


@dataclass
class ValidationResult:
    """Aggregated outcome; ``success`` requires zero errors at every level."""

    success: bool
    set_level: SetLevelValidation
    prd_level: list[PrdLevelValidation] = field(default_factory=list)
    phase_level: list[PhaseLevelValidation] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Serialize the full report."""
        return {
            "success": self.success,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "set_level": self.set_level.to_dict(),
            "prd_level": [item.to_dict() for item in self.prd_level],
            "phase_level": [item.to_dict() for item in self.phase_level],
        }


class PrdSetValidator:
    """Validates a discovered PRD set before the execution loop may start.

    Every check runs regardless of earlier failures; errors accumulate into
    one flat list, each prefixed with the PRD (and phase) it concerns.
    """

    def __init__(self, *, events: EventStream | None = None) -> None:
        self.events = events

    def validate_prd_set(self, discovered: DiscoveredPrdSet) -> ValidationResult:
        """Run set, PRD and phase level validation."""
        warnings: list[str] = []
        set_level = self.validate_set_level(discovered, warnings)
        errors = list(set_level.errors)

        known_ids = {prd.id for prd in discovered.prds}
        prd_level: list[PrdLevelValidation] = []
        for prd in discovered.prds:
            prd_validation = self.validate_prd_level(prd, known_ids)
            prd_level.append(prd_validation)
            errors.extend(f"[{prd.id}] {error}" for error in prd_validation.errors)

        phase_level: list[PhaseLevelValidation] = []
        for prd in discovered.prds:
            phases = prd.metadata.phases
            for phase in phases:
                phase_validation = self.validate_phase_level(prd.id, phase, phases)
                phase_level.append(phase_validation)
                errors.extend(
                    f"[{prd.id}:Phase {phase.id}] {error}" for error in phase_validation.errors
                )

        result = ValidationResult(
            success=not errors,
            set_level=set_level,
            prd_level=prd_level,
            phase_level=phase_level,
            errors=errors,
            warnings=warnings,
        )
        if result.success:
            LOGGER.info("PRD set %s validated (%d PRDs)", discovered.set_id, len(discovered.prds))
        else:
            LOGGER.warning(
                "PRD set %s failed validation with %d errors", discovered.set_id, len(errors)
            )
        if self.events is not None:
            self.events.emit(
                "validation:passed" if result.success else "validation:failed",
                {
                    "set_id": discovered.set_id,
                    "error_count": len(errors),
                    "warning_count": len(warnings),
                },
                severity="info" if result.success else "error",
                prd_id=discovered.manifest.parent.id,
            )
        return result

    def validate_set_level(
        self,
        discovered: DiscoveredPrdSet,
        warnings: list[str] | None = None,
    ) -> SetLevelValidation:
        """Check PRD dependency cycles, file discoverability and consistency."""
        validation = SetLevelValidation()
        set_prefix = f"[{discovered.set_id}]"

        graph = build_dependency_graph(
            (prd.id, prd.metadata.depends_on) for prd in discovered.prds
        )
        cycle = find_cycle(graph)
        validation.cycles = cycle is None
        if cycle is not None:
            validation.errors.append(
                f"{set_prefix} Dependency cycle detected in PRD set: {format_cycle(cycle)}"
            )

        discoverability_errors: list[str] = []
        for prd in discovered.prds:
            error = _check_readable(prd)
            if error is not None:
                discoverability_errors.append(f"[{prd.id}] {error}")
        validation.discoverability = not discoverability_errors
        validation.errors.extend(discoverability_errors)

        consistency_errors = self._consistency_errors(discovered, warnings)
        validation.consistency = not consistency_errors
        validation.errors.extend(consistency_errors)
        return validation

    def validate_prd_level(self, prd: PrdEntry, known_ids: set[str]) -> PrdLevelValidation:
        """Check required frontmatter, dependency references and the phase table."""
        validation = PrdLevelValidation(prd_id=prd.id)
        metadata = prd.metadata

        for field_name in REQUIRED_FRONTMATTER:
            if getattr(metadata, field_name) is None:
                validation.errors.append(f"Missing prd.{field_name}")
        validation.frontmatter = not validation.errors

        dependency_errors = [
            f"Dependency references unknown PRD: {dependency}"
            for dependency in metadata.depends_on
            if dependency not in known_ids
        ]
        validation.dependencies = not dependency_errors
        validation.errors.extend(dependency_errors)

        phase_errors: list[str] = []
        counts = Counter(phase.id for phase in metadata.phases)
        for phase_id, count in counts.items():
            if count > 1:
                phase_errors.append(f"Duplicate phase ID: {phase_id}")
        for phase in metadata.phases:
            if _is_non_positive_number(phase.id):
                phase_errors.append(f"Phase ID must be a positive integer: {phase.id}")
        phase_graph = build_dependency_graph(
            (phase.id, phase.depends_on) for phase in metadata.phases
        )
        phase_cycle = find_cycle(phase_graph)
        if phase_cycle is not None:
            phase_errors.append(
                f"Cycle detected in phase dependencies: {format_cycle(phase_cycle)}"
            )
        validation.phases = not phase_errors
        validation.errors.extend(phase_errors)
        return validation

    def validate_phase_level(
        self,
        prd_id: str,
        phase: PhaseDefinition,
        phases: tuple[PhaseDefinition, ...],
    ) -> PhaseLevelValidation:
        """Check that every dependsOn entry names a phase in the same PRD."""
        validation = PhaseLevelValidation(prd_id=prd_id, phase_id=phase.id)
        valid_ids = {item.id for item in phases}
        invalid = [dependency for dependency in phase.depends_on if dependency not in valid_ids]
        if invalid:
            validation.errors.append(
                f"Phase {phase.id} depends on invalid phases: {', '.join(invalid)}"
            )
        validation.dependencies = not validation.errors
        return validation

    def _consistency_errors(
        self,
        discovered: DiscoveredPrdSet,
        warnings: list[str] | None,
    ) -> list[str]:
        errors: list[str] = []
        parent = discovered.manifest.parent
        children = discovered.manifest.children

        if parent.metadata.status != SPLIT_STATUS:
            errors.append(f"[{parent.id}] Parent PRD {parent.id} must have status: {SPLIT_STATUS}")

        expected_ids = list(parent.metadata.depended_on_by)
        actual_ids = [child.id for child in children]
        for expected_id in expected_ids:
            if expected_id not in actual_ids:
                errors.append(
                    f"[{parent.id}] Child PRD {expected_id} listed in dependedOnBy "
                    "but not found or invalid"
                )
        for child in children:
            if child.id not in expected_ids:
                errors.append(
                    f"[{child.id}] Child PRD {child.id} is not listed in "
                    f"{parent.id} dependedOnBy"
                )
            if child.metadata.parent_prd != parent.id:
                errors.append(
                    f"[{child.id}] Child PRD {child.id} has parentPrd: "
                    f"{child.metadata.parent_prd}, expected: {parent.id}"
                )

        sequences = sorted(child.sequence for child in children)
        duplicates = sorted(value for value, count in Counter(sequences).items() if count > 1)
        if duplicates:
            rendered = ", ".join(str(value) for value in duplicates)
            errors.append(
                f"[{parent.id}] Duplicate prdSequence numbers found in child PRDs: {rendered}"
            )
        non_positive = [value for value in sequences if value <= 0]
        if non_positive:
            rendered = ", ".join(str(value) for value in non_positive)
            errors.append(
                f"[{parent.id}] prdSequence numbers must be positive integers (got: {rendered})"
            )
        if warnings is not None and sequences and not duplicates and not non_positive:
            expected_run = list(range(1, len(sequences) + 1))
            if sequences != expected_run:
                warnings.append(
                    f"[{parent.id}] prdSequence numbers are not contiguous: "
                    f"{', '.join(str(value) for value in sequences)}"
                )
        return errors


def _check_readable(prd: PrdEntry) -> str | None:
    """Return an error when the PRD file is missing or unreadable."""
    if not prd.path.exists():
        return f"PRD file not found: {prd.path}"
    if not prd.path.is_file():
        return f"PRD path is not a file: {prd.path}"
    try:
        prd.path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return f"PRD file not readable: {prd.path} - {exc}"
    return None


def _is_non_positive_number(value: str) -> bool:
    try:
        return int(value) <= 0
    except ValueError:
        return False
