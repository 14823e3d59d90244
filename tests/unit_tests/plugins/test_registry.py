"""Unit tests for family registry resolution and plugin loading helpers."""

from __future__ import annotations

import types
from pathlib import Path

import pytest

from ggml_converter.errors import DescriptorError
from ggml_converter.families import GgmlQuantizeConversion, PyTorchToGgmlConversion
from ggml_converter.plugins.registry import (
    DescriptorRegistry,
    _import_module_or_path,
    _register_from_module,
    create_default_registry,
)

_PLUGIN_SOURCE = '''
from pathlib import Path

from ggml_converter.application.descriptor import ModelConversion
from ggml_converter.schemas import ModelConversionData
from ggml_converter.types import ConversionStepId


class EchoStep(ConversionStepId):
    ECHOING = "echoing"


class EchoData(ModelConversionData):
    path: Path


class EchoConversion(ModelConversion):
    name = "Echo"
    data_model = EchoData
    conversion_steps = tuple(EchoStep)

    def required_files_for(self, data):
        return [data.path]

    def validate(self, data, required_files=None):
        return self._seal(data)

    def make_conversion_pipeline(self, validated, **kwargs):
        raise NotImplementedError


DESCRIPTOR = EchoConversion()
'''


def test_default_registry_lists_builtin_families() -> None:
    registry = create_default_registry()
    assert registry.names() == ["ggml-quantize", "pytorch-ggml"]
    assert [d.name for d in registry.descriptors()] == registry.names()


def test_get_is_case_insensitive() -> None:
    registry = create_default_registry()
    assert isinstance(registry.get("  PyTorch-GGML "), PyTorchToGgmlConversion)


def test_get_unknown_family_lists_available() -> None:
    registry = create_default_registry()
    with pytest.raises(DescriptorError, match="ggml-quantize, pytorch-ggml"):
        registry.get("safetensors")


def test_register_rejects_duplicates() -> None:
    registry = DescriptorRegistry()
    registry.register(GgmlQuantizeConversion())
    with pytest.raises(DescriptorError, match="already registered"):
        registry.register(GgmlQuantizeConversion())


def test_register_rejects_non_descriptors() -> None:
    registry = DescriptorRegistry()
    with pytest.raises(DescriptorError, match="not a ModelConversion"):
        registry.register(object())  # type: ignore[arg-type]


def test_register_requires_name() -> None:
    class _Nameless(GgmlQuantizeConversion):
        name = "  "

    with pytest.raises(DescriptorError, match="non-empty 'name'"):
        DescriptorRegistry().register(_Nameless())


def test_register_requires_steps() -> None:
    class _Stepless(GgmlQuantizeConversion):
        name = "stepless"
        conversion_steps = ()

    with pytest.raises(DescriptorError, match="declares no steps"):
        DescriptorRegistry().register(_Stepless())


def test_load_plugin_from_file_path(tmp_path: Path) -> None:
    plugin = tmp_path / "echo_plugin.py"
    plugin.write_text(_PLUGIN_SOURCE, encoding="utf-8")
    registry = create_default_registry(extra_modules=[str(plugin)])
    assert registry.names() == ["echo", "ggml-quantize", "pytorch-ggml"]


def test_register_from_module_prefers_hook() -> None:
    seen: list[DescriptorRegistry] = []
    module = types.ModuleType("plugin")
    module.register_descriptors = seen.append  # type: ignore[attr-defined]
    module.DESCRIPTOR = object()  # type: ignore[attr-defined]
    registry = DescriptorRegistry()
    _register_from_module(module, registry)
    assert seen == [registry]


def test_register_from_module_accepts_descriptor_list() -> None:
    module = types.ModuleType("plugin")
    module.DESCRIPTORS = [GgmlQuantizeConversion()]  # type: ignore[attr-defined]
    registry = DescriptorRegistry()
    _register_from_module(module, registry)
    assert registry.names() == ["ggml-quantize"]


def test_register_from_module_without_exports_raises() -> None:
    with pytest.raises(DescriptorError, match="register_descriptors"):
        _register_from_module(types.ModuleType("empty"), DescriptorRegistry())


def test_import_failure_is_wrapped() -> None:
    with pytest.raises(DescriptorError, match="Unable to import plugin module"):
        _import_module_or_path("ggml_converter_missing_plugin_module")
