"""Tests for the evaluator registry."""

import pytest

from evalgate.errors import DuplicateNameVersionError, NotFoundError, RegistryFrozenError
from evalgate.evaluation.base import BaseEvaluator
from evalgate.evaluation.builtin import register_builtin_evaluators
from evalgate.evaluation.registry import parse_selector


def accuracy_v1(dataset, system_version):
    return {"accuracy": 0.8}


def accuracy_v2(dataset, system_version):
    return {"accuracy": 0.9}


class LengthEvaluator(BaseEvaluator):
    tolerance = 0.05
    description = "Average record count"

    @property
    def name(self):
        return "length"

    @property
    def version(self):
        return "0.1.0"

    async def evaluate(self, dataset, system_version):
        return {"records": len(dataset)}


class TestEvaluatorRegistry:

    def test_register_and_resolve(self, registry):
        entry = registry.register("accuracy", "1.0", accuracy_v1)

        assert entry.key == "accuracy@1.0"
        assert registry.resolve("accuracy") is entry
        assert registry.resolve("accuracy", "1.0") is entry
        assert "accuracy" in registry
        assert "accuracy@1.0" in registry
        assert len(registry) == 1

    def test_duplicate_rejected_and_original_kept(self, registry):
        original = registry.register("accuracy", "1.0", accuracy_v1)

        with pytest.raises(DuplicateNameVersionError) as exc_info:
            registry.register("accuracy", "1.0", accuracy_v2)

        assert exc_info.value.name == "accuracy"
        assert registry.resolve("accuracy", "1.0").fn is accuracy_v1
        assert registry.resolve("accuracy", "1.0") is original
        assert len(registry) == 1

    def test_latest_is_most_recent_registration(self, registry):
        registry.register("accuracy", "2.0", accuracy_v2)
        registry.register("accuracy", "1.5", accuracy_v1)

        assert registry.resolve("accuracy").version == "1.5"
        assert registry.resolve("accuracy", "2.0").fn is accuracy_v2
        assert registry.versions("accuracy") == ["2.0", "1.5"]

    def test_resolve_selector(self, registry):
        registry.register("accuracy", "1.0", accuracy_v1)
        registry.register("accuracy", "2.0", accuracy_v2)

        assert registry.resolve_selector("accuracy@1.0").fn is accuracy_v1
        assert registry.resolve_selector("accuracy").fn is accuracy_v2

    def test_unknown_evaluator(self, registry):
        registry.register("accuracy", "1.0", accuracy_v1)

        with pytest.raises(NotFoundError):
            registry.resolve("missing")
        with pytest.raises(NotFoundError):
            registry.resolve("accuracy", "9.9")
        assert "accuracy@9.9" not in registry

    def test_frozen_registry(self, registry):
        registry.register("accuracy", "1.0", accuracy_v1)
        registry.freeze()

        assert registry.frozen
        with pytest.raises(RegistryFrozenError):
            registry.register("accuracy", "2.0", accuracy_v2)
        assert registry.resolve("accuracy").version == "1.0"

    @pytest.mark.parametrize("name,version", [("", "1.0"), ("a@b", "1.0"), ("accuracy", "")])
    def test_invalid_registration(self, registry, name, version):
        with pytest.raises(ValueError):
            registry.register(name, version, accuracy_v1)

    def test_negative_tolerance_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register("accuracy", "1.0", accuracy_v1, tolerance=-0.1)

    def test_class_based_evaluator(self, registry):
        entry = registry.register_evaluator(LengthEvaluator())

        assert entry.key == "length@0.1.0"
        assert entry.tolerance == 0.05
        assert entry.description == "Average record count"

    def test_builtins(self, registry):
        register_builtin_evaluators(registry)
        assert registry.names() == ["escalation_rate", "decision_consistency"]


def test_parse_selector():
    assert parse_selector("accuracy") == ("accuracy", None)
    assert parse_selector("accuracy@1.2.0") == ("accuracy", "1.2.0")
