"""Dependency evaluation — decides which steps, sections and fields are visible.

All functions here are pure: they read a snapshot of form values and never
mutate it. ``DependencyIndex`` lets the runtime re-evaluate only the
elements whose dependencies reference a changed path, so the cost of a
keystroke scales with the declared dependencies rather than the form size.
"""

import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol

from fieldsurvey.schemas.forms import FieldDependency, FormConfig

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel for a path that does not resolve. Distinct from an explicit None."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class Conditional(Protocol):
    """Anything that carries dependencies: a step, section or field config."""

    dependencies: Sequence[FieldDependency]
    dependency_groups: Sequence[Sequence[FieldDependency]]


# ---------------------------------------------------------------------------
# Value lookup and coercion
# ---------------------------------------------------------------------------


def resolve_path(values: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path (``address.ward``, ``members.0.age``) through nested values.

    Returns MISSING when any segment is absent.
    """
    current: Any = values
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def _strict_equals(left: Any, right: Any) -> bool:
    if left is MISSING or right is MISSING:
        return left is right
    # A bool never equals a number, even though Python treats True == 1.
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _to_text(value: Any) -> str:
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else _to_text(item) for item in value)
    return str(value)


def _to_number(value: Any) -> float:
    """Numeric coercion; anything non-numeric (missing, None, blank, text) becomes NaN."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def evaluate(dependency: FieldDependency, values: Mapping[str, Any]) -> bool:
    """Evaluate one dependency against the current form values."""
    actual = resolve_path(values, dependency.field)
    expected = dependency.value

    match dependency.operator:
        case "equals":
            return _strict_equals(actual, expected)
        case "notEquals":
            return not _strict_equals(actual, expected)
        case "contains":
            if isinstance(actual, (list, tuple)):
                return any(_strict_equals(item, expected) for item in actual)
            return _to_text(expected) in _to_text(actual)
        case "greaterThan":
            return _to_number(actual) > _to_number(expected)
        case "lessThan":
            return _to_number(actual) < _to_number(expected)
        case _:
            logger.warning("Unknown dependency operator '%s' on field '%s'", dependency.operator, dependency.field)
            return False


def evaluate_all(dependencies: Iterable[FieldDependency], values: Mapping[str, Any]) -> bool:
    """AND over a dependency list. An empty list is vacuously true."""
    return all(evaluate(dep, values) for dep in dependencies)


def evaluate_any_group(groups: Sequence[Iterable[FieldDependency]], values: Mapping[str, Any]) -> bool:
    """OR over AND-groups. No groups means no constraint."""
    if not groups:
        return True
    return any(evaluate_all(group, values) for group in groups)


def is_visible(element: Conditional, values: Mapping[str, Any]) -> bool:
    return evaluate_all(element.dependencies, values) and evaluate_any_group(element.dependency_groups, values)


def has_dependencies(element: Conditional) -> bool:
    return bool(element.dependencies) or bool(element.dependency_groups)


def referenced_paths(element: Conditional) -> set[str]:
    paths = {dep.field for dep in element.dependencies}
    for group in element.dependency_groups:
        paths.update(dep.field for dep in group)
    return paths


# ---------------------------------------------------------------------------
# Incremental visibility
# ---------------------------------------------------------------------------


def element_key(kind: str, *ids: str) -> str:
    """Stable key for a step, section or field: ``step:s1``, ``section:s1/sec2``, ``field:ward``."""
    return f"{kind}:{'/'.join(ids)}"


def _paths_overlap(changed: str, referenced: str) -> bool:
    # Setting "address" affects "address.ward" and setting "address.ward"
    # affects a dependency on "address" (contains, equality on the object).
    return (
        changed == referenced
        or referenced.startswith(changed + ".")
        or changed.startswith(referenced + ".")
    )


class DependencyIndex:
    """Visibility state for the conditional elements of one form.

    Only elements that declare dependencies are tracked; everything else is
    visible by definition. ``refresh`` re-evaluates the elements whose
    dependencies reference the changed path and reports which flipped.
    """

    def __init__(self, config: FormConfig) -> None:
        self._elements: dict[str, Conditional] = {}
        self._by_path: dict[str, set[str]] = defaultdict(set)
        self._visible: dict[str, bool] = {}

        for step in config.steps:
            self._register(element_key("step", step.id), step)
            for section in step.sections:
                self._register(element_key("section", step.id, section.id), section)
                for form_field in section.fields:
                    self._register(element_key("field", form_field.id), form_field)

    def _register(self, key: str, element: Conditional) -> None:
        if not has_dependencies(element):
            return
        self._elements[key] = element
        for path in referenced_paths(element):
            self._by_path[path].add(key)

    @property
    def tracked(self) -> int:
        return len(self._elements)

    def recompute(self, values: Mapping[str, Any]) -> None:
        """Evaluate every tracked element from scratch (form load, bulk updates)."""
        self._visible = {key: is_visible(element, values) for key, element in self._elements.items()}

    def affected_by(self, path: str) -> set[str]:
        affected: set[str] = set()
        for referenced, keys in self._by_path.items():
            if _paths_overlap(path, referenced):
                affected |= keys
        return affected

    def refresh(self, path: str, values: Mapping[str, Any]) -> dict[str, bool]:
        """Re-evaluate elements depending on ``path``; return {key: visible} for those that changed."""
        changed: dict[str, bool] = {}
        for key in self.affected_by(path):
            visible = is_visible(self._elements[key], values)
            if self._visible.get(key) != visible:
                changed[key] = visible
            self._visible[key] = visible
        return changed

    def is_visible(self, key: str) -> bool:
        return self._visible.get(key, True)
