"""
Host execution engine.

The OpenCL kernels re-expressed as per-work-item Python functions driven
by parallel_for_2d over a padded 2D index space. Each unit gets a
read-only view of the input and the coefficient table as a tuple, and
writes only its own output element. Used as the reference for
verification and as the "host" device.
"""

import time
from concurrent.futures import ThreadPoolExecutor

from .config import LOCAL_SIZE, convolution_extent, launch_grid, pooling_extent


def saturate(value):
    """Clamp to [0, 255] and truncate toward zero. NaN maps to 0."""
    if not value > 0.0:
        return 0
    if value >= 255.0:
        return 255
    return int(value)


def clamp(value, low, high):
    return low if value < low else high if value > high else value


def parallel_for_2d(global_size, local_size, unit):
    """Call ``unit(x, y)`` once for every index of the padded grid.

    Indices are visited work-group by work-group. ``global_size`` must be
    a multiple of ``local_size``; units past the real extent are expected
    to return without doing anything.
    """
    gw, gh = global_size
    lx, ly = local_size
    for group_y in range(0, gh, ly):
        for group_x in range(0, gw, lx):
            for y in range(group_y, group_y + ly):
                for x in range(group_x, group_x + lx):
                    unit(x, y)


def convolve_unit(src, dst, coeffs, width, height):
    def unit(x, y):
        if x >= width or y >= height:
            return

        total = 0.0
        for dy in (-1, 0, 1):
            row = clamp(y + dy, 0, height - 1) * width
            for dx in (-1, 0, 1):
                nx = clamp(x + dx, 0, width - 1)
                total += src[row + nx] * coeffs[(dy + 1) * 3 + (dx + 1)]

        dst[y * width + x] = saturate(total)

    return unit


def _pool_unit(src, dst, width, height, initial, better):
    out_width = width // 2

    def unit(ox, oy):
        x = 2 * ox
        y = 2 * oy
        if x + 1 >= width or y + 1 >= height:
            return

        best = initial
        for dy in (0, 1):
            row = (y + dy) * width
            for dx in (0, 1):
                v = src[row + x + dx]
                if better(v, best):
                    best = v

        dst[oy * out_width + ox] = best

    return unit


def max_pool_unit(src, dst, width, height):
    return _pool_unit(src, dst, width, height, 0, lambda v, best: v > best)


def min_pool_unit(src, dst, width, height):
    return _pool_unit(src, dst, width, height, 255, lambda v, best: v < best)


def _timed(global_size, local_size, unit):
    start = time.perf_counter()
    parallel_for_2d(global_size, local_size, unit)
    return (time.perf_counter() - start) * 1000


class HostEngine:
    """Runs the three kernels concurrently on a thread pool."""

    name = "host"

    def __init__(self, local_size=LOCAL_SIZE, max_workers=3):
        self.local_size = local_size
        self.max_workers = max_workers

    def launch(self, staged):
        """Submit the three kernels; returns {kernel name: future}."""
        width, height = staged.width, staged.height
        src = memoryview(staged.input.handle).toreadonly()
        coeffs = staged.coefficients.handle

        conv_grid = launch_grid(convolution_extent(width, height), self.local_size)
        pool_grid = launch_grid(pooling_extent(width, height), self.local_size)

        launches = {
            "convolve": (conv_grid, convolve_unit(
                src, memoryview(staged.convolved.handle), coeffs, width, height)),
            "max_pool": (pool_grid, max_pool_unit(
                src, memoryview(staged.max_pooled.handle), width, height)),
            "min_pool": (pool_grid, min_pool_unit(
                src, memoryview(staged.min_pooled.handle), width, height)),
        }

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            futures = {name: executor.submit(_timed, grid, self.local_size, unit)
                       for name, (grid, unit) in launches.items()}
        finally:
            executor.shutdown(wait=False)
        return futures

    def synchronize(self, futures):
        """Wait for every kernel; returns kernel times in ms."""
        return {name: future.result() for name, future in futures.items()}
