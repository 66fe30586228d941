"""
Accelerator memory manager.

Every device allocation is wrapped in a DeviceBuffer, a context manager
that releases its allocation exactly once. The managers count allocations
and releases so a run can be checked for leaks.
"""

from dataclasses import dataclass

import numpy as np
import pyopencl as cl

from .errors import DeviceResourceError


class DeviceBuffer:
    """Owning handle for one device allocation."""

    def __init__(self, manager, handle, shape, name):
        self._manager = manager
        self._handle = handle
        self.shape = tuple(shape)
        self.name = name

    @property
    def handle(self):
        if self._handle is None:
            raise DeviceResourceError(f"Buffer '{self.name}' used after release")
        return self._handle

    @property
    def released(self):
        return self._handle is None

    @property
    def size(self):
        return int(np.prod(self.shape))

    def release(self):
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        self._manager._release(handle)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def __repr__(self):
        state = "released" if self.released else "live"
        return f"<DeviceBuffer {self.name} {self.shape} {state}>"


@dataclass
class StagedBuffers:
    """Device-side state of one run, ready for the kernels."""
    input: DeviceBuffer
    convolved: DeviceBuffer
    max_pooled: DeviceBuffer
    min_pooled: DeviceBuffer
    coefficients: DeviceBuffer
    width: int
    height: int


class MemoryManager:
    """Allocation, copy and release bookkeeping shared by all backends."""

    def __init__(self):
        self.allocations = 0
        self.releases = 0

    @property
    def live_allocations(self):
        return self.allocations - self.releases

    def allocate(self, shape, name):
        """Allocate an uninitialised uint8 device buffer of ``shape``."""
        nbytes = int(np.prod(shape))
        try:
            handle = self._allocate(nbytes)
        except (cl.Error, MemoryError) as e:
            raise DeviceResourceError(
                f"Allocation of '{name}' ({nbytes} bytes) failed: {e}") from e
        self.allocations += 1
        return DeviceBuffer(self, handle, shape, name)

    def broadcast(self, coefficients):
        """Place the coefficient table in read-only device storage."""
        table = coefficients.as_array()
        try:
            handle = self._broadcast(table)
        except (cl.Error, MemoryError) as e:
            raise DeviceResourceError(f"Coefficient broadcast failed: {e}") from e
        self.allocations += 1
        return DeviceBuffer(self, handle, table.shape, "coefficients")

    def upload(self, buffer, array):
        """Blocking host-to-device copy."""
        array = np.ascontiguousarray(array, dtype=np.uint8)
        if array.size != buffer.size:
            raise DeviceResourceError(
                f"Upload size mismatch for '{buffer.name}': "
                f"{array.size} bytes into {buffer.size}")
        try:
            self._upload(buffer.handle, array)
        except (cl.Error, MemoryError) as e:
            raise DeviceResourceError(f"Upload to '{buffer.name}' failed: {e}") from e

    def download(self, buffer):
        """Blocking device-to-host copy into a fresh array."""
        try:
            host = np.empty(buffer.shape, dtype=np.uint8)
            if host.size:
                self._download(buffer.handle, host)
        except (cl.Error, MemoryError) as e:
            raise DeviceResourceError(
                f"Download from '{buffer.name}' failed: {e}") from e
        return host

    def _release(self, handle):
        self.releases += 1
        self._free(handle)

    # backend hooks
    def _allocate(self, nbytes):
        raise NotImplementedError

    def _broadcast(self, table):
        raise NotImplementedError

    def _upload(self, handle, array):
        raise NotImplementedError

    def _download(self, handle, host):
        raise NotImplementedError

    def _free(self, handle):
        raise NotImplementedError


class OpenCLMemoryManager(MemoryManager):

    def __init__(self, context, queue):
        super().__init__()
        self.context = context
        self.queue = queue

    def _allocate(self, nbytes):
        # zero-sized buffers are invalid in OpenCL (1x1 images pool to 0x0)
        return cl.Buffer(self.context, cl.mem_flags.READ_WRITE, max(nbytes, 1))

    def _broadcast(self, table):
        mf = cl.mem_flags
        buf = cl.Buffer(self.context, mf.READ_ONLY, table.nbytes)
        try:
            cl.enqueue_copy(self.queue, buf, np.array(table), is_blocking=True)
        except cl.Error:
            buf.release()
            raise
        return buf

    def _upload(self, handle, array):
        cl.enqueue_copy(self.queue, handle, array, is_blocking=True)

    def _download(self, handle, host):
        cl.enqueue_copy(self.queue, host, handle, is_blocking=True)

    def _free(self, handle):
        handle.release()


class HostMemoryManager(MemoryManager):
    """'Device' memory in host RAM for the host execution engine."""

    def _allocate(self, nbytes):
        return np.zeros(nbytes, dtype=np.uint8)

    def _broadcast(self, table):
        # a tuple: no work-item can write to it
        return tuple(float(w) for w in table.ravel())

    def _upload(self, handle, array):
        np.copyto(handle, array.ravel())

    def _download(self, handle, host):
        np.copyto(host.ravel(), handle)

    def _free(self, handle):
        pass
