from .loader import load_file, load_registry
from .types import (
    DependsOrder,
    RegistryOptions,
    TaskConfig,
    TaskRegistry,
    TaskType,
    UnsupportedConfigFormatError,
    ValidationError,
)

__all__ = [
    "load_file",
    "load_registry",
    "DependsOrder",
    "RegistryOptions",
    "TaskConfig",
    "TaskRegistry",
    "TaskType",
    "UnsupportedConfigFormatError",
    "ValidationError",
]
