"""Registry and plugin discovery for conversion families."""

from .registry import DescriptorRegistry, create_default_registry

__all__ = ["DescriptorRegistry", "create_default_registry"]
