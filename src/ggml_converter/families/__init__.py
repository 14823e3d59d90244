"""Built-in conversion families."""

from .ggml_quantize import GgmlQuantizeConversion, QuantizeStep, QuantizeValidationError
from .pytorch_ggml import PyTorchStep, PyTorchToGgmlConversion, PyTorchValidationError

__all__ = [
    "GgmlQuantizeConversion",
    "PyTorchStep",
    "PyTorchToGgmlConversion",
    "PyTorchValidationError",
    "QuantizeStep",
    "QuantizeValidationError",
]
