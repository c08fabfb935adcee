"""Append-only registry of named, versioned evaluators."""

from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from evalgate.errors import DuplicateNameVersionError, NotFoundError, RegistryFrozenError
from evalgate.evaluation.base import BaseEvaluator

logger = structlog.get_logger()

EvaluatorFn = Callable[..., Any]


@dataclass(frozen=True)
class RegisteredEvaluator:
    """An evaluator as stored in the registry. Never mutated after registration."""

    name: str
    version: str
    fn: EvaluatorFn
    tolerance: float = 0.0
    description: str = ""
    order: int = field(default=0, compare=False)

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"


def parse_selector(selector: str) -> tuple[str, str | None]:
    """Split 'name@version' into its parts; a bare name selects the latest version."""
    name, sep, version = selector.partition("@")
    return name, (version if sep else None)


class EvaluatorRegistry:
    """
    Registry of evaluators keyed by (name, version).

    Registrations are append-only: a (name, version) pair can be registered once and
    is never overwritten, so historical metric sets stay reproducible against the
    evaluator version that produced them. Updating logic means registering a new
    version. ``resolve(name)`` returns the most recently registered version.
    """

    def __init__(self):
        self._entries: dict[tuple[str, str], RegisteredEvaluator] = {}
        self._versions: dict[str, list[str]] = {}
        self._frozen = False

    def register(
        self,
        name: str,
        version: str,
        fn: EvaluatorFn,
        tolerance: float = 0.0,
        description: str = "",
    ) -> RegisteredEvaluator:
        """
        Register an evaluator function.

        Raises:
            DuplicateNameVersionError: The (name, version) pair already exists.
            RegistryFrozenError: The registry no longer accepts registrations.
        """
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register {name}@{version}: registry is frozen")
        if not name or "@" in name:
            raise ValueError(f"Invalid evaluator name: {name!r}")
        if not version:
            raise ValueError(f"Evaluator {name} requires a version")
        if not callable(fn):
            raise ValueError(f"Evaluator {name}@{version} is not callable")
        if tolerance < 0:
            raise ValueError(f"Evaluator {name}@{version} has negative tolerance")

        key = (name, version)
        if key in self._entries:
            logger.error("Duplicate evaluator registration", evaluator=name, version=version)
            raise DuplicateNameVersionError(name, version)

        entry = RegisteredEvaluator(
            name=name,
            version=version,
            fn=fn,
            tolerance=tolerance,
            description=description,
            order=len(self._entries),
        )
        self._entries[key] = entry
        self._versions.setdefault(name, []).append(version)

        logger.info("Evaluator registered", evaluator=name, version=version, tolerance=tolerance)
        return entry

    def register_evaluator(self, evaluator: BaseEvaluator) -> RegisteredEvaluator:
        """Register a class-based evaluator under its own name and version."""
        return self.register(
            evaluator.name,
            evaluator.version,
            evaluator.evaluate,
            tolerance=evaluator.tolerance,
            description=evaluator.description,
        )

    def resolve(self, name: str, version: str | None = None) -> RegisteredEvaluator:
        """Look up an evaluator, pinned to a version or the latest registered one."""
        versions = self._versions.get(name)
        if not versions:
            raise NotFoundError("Evaluator", name)
        if version is None:
            version = versions[-1]
        entry = self._entries.get((name, version))
        if entry is None:
            raise NotFoundError("Evaluator", f"{name}@{version}")
        return entry

    def resolve_selector(self, selector: str) -> RegisteredEvaluator:
        return self.resolve(*parse_selector(selector))

    def names(self) -> list[str]:
        """Evaluator names in first-registration order."""
        return list(self._versions)

    def versions(self, name: str) -> list[str]:
        if name not in self._versions:
            raise NotFoundError("Evaluator", name)
        return list(self._versions[name])

    def freeze(self) -> None:
        """Stop accepting registrations, typically once startup completes."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, selector: str) -> bool:
        name, version = parse_selector(selector)
        if version is None:
            return name in self._versions
        return (name, version) in self._entries

    def __len__(self) -> int:
        return len(self._entries)
