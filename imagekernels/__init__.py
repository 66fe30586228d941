"""
Grayscale 3x3 convolution and 2x2 max/min pooling on OpenCL devices.
"""

from .config import (
    HEIGHT,
    LOCAL_SIZE,
    SHARPEN,
    WIDTH,
    CoefficientTable,
    PipelineConfig,
)
from .errors import DeviceResourceError, ImageKernelsError, InputError
from .pipeline import Backend, PipelineResult, open_backend, run_pipeline

__version__ = "0.1.0"

__all__ = [
    "HEIGHT",
    "LOCAL_SIZE",
    "SHARPEN",
    "WIDTH",
    "Backend",
    "CoefficientTable",
    "DeviceResourceError",
    "ImageKernelsError",
    "InputError",
    "PipelineConfig",
    "PipelineResult",
    "open_backend",
    "run_pipeline",
]
