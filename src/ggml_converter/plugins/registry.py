"""Conversion family registry and plugin discovery helpers."""

from __future__ import annotations

import importlib
import importlib.util
import sys
from collections.abc import Iterable
from pathlib import Path
from types import ModuleType
from typing import Any

from ggml_converter.application.descriptor import ModelConversion
from ggml_converter.errors import DescriptorError
from ggml_converter.families import GgmlQuantizeConversion, PyTorchToGgmlConversion

type AnyConversion = ModelConversion[Any, Any, Any, Any]


class DescriptorRegistry:
    """Registry of model conversion descriptors keyed by family name."""

    def __init__(self) -> None:
        self._descriptors: dict[str, AnyConversion] = {}

    def register(self, descriptor: AnyConversion) -> None:
        """Register a descriptor under its unique family name.

        Parameters
        ----------
        descriptor : ModelConversion
            Descriptor instance to register.

        Raises
        ------
        DescriptorError
            If the descriptor is not a ``ModelConversion``, has no name, or its
            name is already taken.
        """
        if not isinstance(descriptor, ModelConversion):
            raise DescriptorError(
                f"{descriptor!r} is not a ModelConversion descriptor."
            )
        name = getattr(descriptor, "name", "").strip().lower()
        if not name:
            raise DescriptorError("Descriptor must define a non-empty 'name'.")
        if name in self._descriptors:
            raise DescriptorError(f"Conversion family '{name}' is already registered.")
        if not getattr(descriptor, "conversion_steps", ()):
            raise DescriptorError(f"Conversion family '{name}' declares no steps.")
        self._descriptors[name] = descriptor

    def names(self) -> list[str]:
        """Return registered family names.

        Returns
        -------
        list[str]
            Sorted list of family names.
        """
        return sorted(self._descriptors.keys())

    def descriptors(self) -> list[AnyConversion]:
        return [self._descriptors[name] for name in self.names()]

    def get(self, name: str) -> AnyConversion:
        """Get descriptor by family name.

        Raises
        ------
        DescriptorError
            If the family is not registered.
        """
        try:
            return self._descriptors[name.strip().lower()]
        except KeyError as exc:
            raise DescriptorError(
                f"Unknown conversion family '{name}'. "
                f"Available families: {', '.join(self.names())}"
            ) from exc

    def load_module(self, module_or_path: str) -> None:
        """Load descriptors from module name or file path.

        .. warning::
            This method executes code from the specified module. Only load
            plugins from trusted sources.
        """
        module = _import_module_or_path(module_or_path)
        _register_from_module(module, self)


def _import_module_or_path(module_or_path: str) -> ModuleType:
    """Import module by import path or filesystem path.

    .. warning::
        This function executes arbitrary Python code from the specified module or
        file. Plugin loading should only happen on explicit user request (the
        ``--plugin-module`` CLI flag).

    Raises
    ------
    DescriptorError
        If import cannot be completed.
    """
    candidate = Path(module_or_path)
    if candidate.exists():
        spec = importlib.util.spec_from_file_location(candidate.stem, candidate)
        if spec is None or spec.loader is None:
            raise DescriptorError(f"Unable to load plugin module from {candidate}.")
        module = importlib.util.module_from_spec(spec)
        # Pydantic resolves postponed annotations through sys.modules.
        sys.modules[spec.name] = module
        try:
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(spec.name, None)
            raise
        return module

    try:
        return importlib.import_module(module_or_path)
    except Exception as exc:
        raise DescriptorError(
            f"Unable to import plugin module '{module_or_path}': {exc}"
        ) from exc


def _register_from_module(module: ModuleType, registry: DescriptorRegistry) -> None:
    """Register descriptor definitions found in module."""
    if hasattr(module, "register_descriptors"):
        module.register_descriptors(registry)
        return

    descriptors_obj = getattr(module, "DESCRIPTORS", None)
    if descriptors_obj is not None:
        for descriptor in descriptors_obj:
            registry.register(descriptor)
        return

    descriptor_obj = getattr(module, "DESCRIPTOR", None)
    if descriptor_obj is not None:
        registry.register(descriptor_obj)
        return

    raise DescriptorError(
        "Plugin module must expose register_descriptors(registry), "
        "DESCRIPTORS, or DESCRIPTOR."
    )


def create_default_registry(
    extra_modules: Iterable[str] | None = None,
) -> DescriptorRegistry:
    """Create the registry of built-in families plus any plugin modules.

    Parameters
    ----------
    extra_modules : Iterable[str] | None, optional
        Additional plugin modules to load.
    """
    registry = DescriptorRegistry()
    registry.register(PyTorchToGgmlConversion())
    registry.register(GgmlQuantizeConversion())
    for module in extra_modules or []:
        registry.load_module(module)
    return registry
