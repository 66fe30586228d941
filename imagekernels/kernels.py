"""
OpenCL kernels and the engine that launches them.

convolve3x3 : 3x3 filter, edge-clamped, saturated to [0, 255]
maxPool2x2  : maximum of each non-overlapping 2x2 block
minPool2x2  : minimum of each non-overlapping 2x2 block
"""

import numpy as np
import pyopencl as cl

from .config import LOCAL_SIZE, convolution_extent, launch_grid, pooling_extent
from .errors import DeviceResourceError

CONVOLUTION_SOURCE = """
// 3x3 Convolution Kernel
__kernel void convolve3x3(__global const uchar* input,
                          __global uchar* output,
                          __constant float* coeffs,
                          const int width,
                          const int height) {

    int x = get_global_id(0);
    int y = get_global_id(1);

    if (x >= width || y >= height) return;

    float sum = 0.0f;
    for (int dy = -1; dy <= 1; dy++) {
        // Clamp coordinates to image boundaries
        int ny = clamp(y + dy, 0, height - 1);
        for (int dx = -1; dx <= 1; dx++) {
            int nx = clamp(x + dx, 0, width - 1);
            sum += (float)input[ny * width + nx] * coeffs[(dy + 1) * 3 + (dx + 1)];
        }
    }

    // Saturate, then truncate toward zero (NaN becomes 0)
    output[y * width + x] = (uchar)fmin(fmax(sum, 0.0f), 255.0f);
}
"""

# %(name)s, %(init)s and %(cmp)s select max or min
POOL_TEMPLATE = """
__kernel void %(name)s(__global const uchar* input,
                       __global uchar* output,
                       const int width,
                       const int height) {

    int ox = get_global_id(0);
    int oy = get_global_id(1);
    int x = 2 * ox;
    int y = 2 * oy;

    // Block would read past the last column/row (odd size or grid padding)
    if (x + 1 >= width || y + 1 >= height) return;

    uchar best = %(init)s;
    for (int dy = 0; dy < 2; dy++) {
        for (int dx = 0; dx < 2; dx++) {
            uchar v = input[(y + dy) * width + (x + dx)];
            if (v %(cmp)s best) best = v;
        }
    }

    output[oy * (width / 2) + ox] = best;
}
"""

KERNEL_SOURCE = (
    CONVOLUTION_SOURCE
    + POOL_TEMPLATE % {"name": "maxPool2x2", "init": "0", "cmp": ">"}
    + POOL_TEMPLATE % {"name": "minPool2x2", "init": "255", "cmp": "<"}
)

KERNEL_NAMES = ("convolve", "max_pool", "min_pool")


class OpenCLEngine:
    """Builds the kernels once and launches them on a profiling queue."""

    def __init__(self, context, queue, device, local_size=LOCAL_SIZE):
        self.context = context
        self.queue = queue
        self.device = device
        self.name = device.name.strip()
        # fall back to a driver-chosen group size on small-group devices
        if local_size[0] * local_size[1] > device.max_work_group_size:
            local_size = None
        self.local_size = local_size
        try:
            self.program = cl.Program(context, KERNEL_SOURCE).build()
            self.convolve3x3 = cl.Kernel(self.program, "convolve3x3")
            self.max_pool2x2 = cl.Kernel(self.program, "maxPool2x2")
            self.min_pool2x2 = cl.Kernel(self.program, "minPool2x2")
        except cl.Error as e:
            raise DeviceResourceError(f"Kernel build failed: {e}") from e

    def _global_size(self, extent):
        return launch_grid(extent, self.local_size or LOCAL_SIZE)

    def launch(self, staged):
        """Enqueue the three kernels; returns {kernel name: event}."""
        w = np.int32(staged.width)
        h = np.int32(staged.height)
        conv_grid = self._global_size(convolution_extent(staged.width, staged.height))
        pool_grid = self._global_size(pooling_extent(staged.width, staged.height))

        try:
            events = {
                "convolve": self.convolve3x3(
                    self.queue, conv_grid, self.local_size,
                    staged.input.handle, staged.convolved.handle,
                    staged.coefficients.handle, w, h),
                "max_pool": self.max_pool2x2(
                    self.queue, pool_grid, self.local_size,
                    staged.input.handle, staged.max_pooled.handle, w, h),
                "min_pool": self.min_pool2x2(
                    self.queue, pool_grid, self.local_size,
                    staged.input.handle, staged.min_pooled.handle, w, h),
            }
        except cl.Error as e:
            raise DeviceResourceError(f"Kernel launch failed: {e}") from e
        return events

    def synchronize(self, events):
        """Wait for every launch; returns kernel times in ms."""
        try:
            cl.wait_for_events(list(events.values()))
        except cl.Error as e:
            raise DeviceResourceError(f"Kernel execution failed: {e}") from e

        return {name: (event.profile.end - event.profile.start) * 1e-6
                for name, event in events.items()}
