"""
One full run: stage the image and coefficients on the device, launch the
three kernels, wait, read the results back and release everything.
"""

from contextlib import ExitStack
from dataclasses import dataclass, field

import numpy as np

from .config import PipelineConfig
from .device import setup_opencl
from .errors import InputError
from .host import HostEngine
from .kernels import OpenCLEngine
from .memory import HostMemoryManager, OpenCLMemoryManager, StagedBuffers


@dataclass
class Backend:
    memory: object
    engine: object

    @property
    def name(self):
        return self.engine.name


@dataclass
class PipelineResult:
    convolved: np.ndarray
    max_pooled: np.ndarray
    min_pooled: np.ndarray
    timings: dict = field(default_factory=dict)  # ms per kernel
    device: str = ""

    def outputs(self):
        return {
            "convolved": self.convolved,
            "maxpooled": self.max_pooled,
            "minpooled": self.min_pooled,
        }


def open_backend(device="auto", local_size=None):
    """Memory manager + engine for 'host' or an OpenCL device preference."""
    kwargs = {} if local_size is None else {"local_size": local_size}
    if device == "host":
        return Backend(HostMemoryManager(), HostEngine(**kwargs))

    context, queue, cl_device = setup_opencl(device)
    return Backend(OpenCLMemoryManager(context, queue),
                   OpenCLEngine(context, queue, cl_device, **kwargs))


def validate_image(image, config):
    """Reject anything but a 2D uint8 image of the configured size."""
    image = np.asarray(image)
    if image.dtype != np.uint8:
        raise InputError(f"Image must be 8-bit, got dtype {image.dtype}")
    if image.ndim != 2:
        raise InputError(f"Image must be single-channel, got shape {image.shape}")
    if image.shape != config.image_shape:
        raise InputError(
            f"Image must be {config.width}x{config.height}, "
            f"got {image.shape[1]}x{image.shape[0]}")
    return image


def run_pipeline(image, backend, config=None, verbose=False):
    """Convolve and pool ``image`` on ``backend``; returns PipelineResult.

    Raises InputError before touching the device, DeviceResourceError
    after releasing whatever was allocated.
    """
    image = np.asarray(image)
    if config is None:
        if image.ndim != 2:
            raise InputError(f"Image must be single-channel, got shape {image.shape}")
        config = PipelineConfig(width=image.shape[1], height=image.shape[0])
    image = validate_image(image, config)
    memory, engine = backend.memory, backend.engine

    with ExitStack() as stack:
        def acquire(buffer):
            return stack.enter_context(buffer)

        staged = StagedBuffers(
            input=acquire(memory.allocate(config.image_shape, "input")),
            convolved=acquire(memory.allocate(config.image_shape, "convolved")),
            max_pooled=acquire(memory.allocate(config.pooled_shape, "max_pooled")),
            min_pooled=acquire(memory.allocate(config.pooled_shape, "min_pooled")),
            coefficients=acquire(memory.broadcast(config.coefficients)),
            width=config.width,
            height=config.height,
        )
        if verbose:
            print(f"Allocated {memory.live_allocations} device buffers on {backend.name}")

        memory.upload(staged.input, image)

        launches = engine.launch(staged)
        timings = engine.synchronize(launches)

        result = PipelineResult(
            convolved=memory.download(staged.convolved),
            max_pooled=memory.download(staged.max_pooled),
            min_pooled=memory.download(staged.min_pooled),
            timings=timings,
            device=backend.name,
        )

    if verbose:
        for name, ms in timings.items():
            print(f"   ✓ {name:10} {ms:8.3f} ms")
    return result
