"""
Tests for device buffer ownership and allocation accounting.

Every run, successful or not, must leave zero live device allocations.
"""

import numpy as np
import pyopencl as cl
import pytest

from imagekernels import SHARPEN, PipelineConfig, run_pipeline
from imagekernels.errors import DeviceResourceError, InputError
from imagekernels.host import HostEngine
from imagekernels.memory import HostMemoryManager
from imagekernels.pipeline import Backend


class FailingMemoryManager(HostMemoryManager):
    """Host memory that runs out after ``limit`` allocations."""

    def __init__(self, limit):
        super().__init__()
        self.limit = limit

    def _allocate(self, nbytes):
        if self.allocations >= self.limit:
            raise MemoryError("out of device memory")
        return super()._allocate(nbytes)


class FailingCopyMemoryManager(HostMemoryManager):
    """Host memory whose upload or download raises ``error``."""

    def __init__(self, direction, error):
        super().__init__()
        self.direction = direction
        self.error = error

    def _upload(self, handle, array):
        if self.direction == "upload":
            raise self.error
        super()._upload(handle, array)

    def _download(self, handle, host):
        if self.direction == "download":
            raise self.error
        super()._download(handle, host)


class FailingEngine(HostEngine):

    def launch(self, staged):
        raise DeviceResourceError("launch rejected")


class TestDeviceBuffer:

    def test_release_is_idempotent(self):
        memory = HostMemoryManager()
        buf = memory.allocate((4, 4), "input")
        assert memory.live_allocations == 1
        buf.release()
        buf.release()
        assert buf.released
        assert memory.allocations == memory.releases == 1

    def test_context_manager_releases(self):
        memory = HostMemoryManager()
        with memory.allocate((2, 3), "input") as buf:
            assert buf.shape == (2, 3)
            assert buf.size == 6
            assert not buf.released
        assert buf.released
        assert memory.live_allocations == 0

    def test_use_after_release_raises(self):
        memory = HostMemoryManager()
        buf = memory.allocate((2, 2), "input")
        buf.release()
        with pytest.raises(DeviceResourceError, match="after release"):
            buf.handle

    def test_upload_download_round_trip(self, rng):
        memory = HostMemoryManager()
        image = rng.integers(0, 256, size=(3, 5), dtype=np.uint8)
        with memory.allocate(image.shape, "input") as buf:
            memory.upload(buf, image)
            np.testing.assert_array_equal(memory.download(buf), image)

    def test_upload_size_mismatch(self):
        memory = HostMemoryManager()
        with memory.allocate((2, 2), "input") as buf:
            with pytest.raises(DeviceResourceError, match="size mismatch"):
                memory.upload(buf, np.zeros((3, 3), dtype=np.uint8))

    def test_broadcast_table_is_immutable(self):
        memory = HostMemoryManager()
        with memory.broadcast(SHARPEN) as table:
            assert isinstance(table.handle, tuple)
            assert table.handle == SHARPEN.weights
            assert memory.live_allocations == 1
        assert memory.live_allocations == 0

    def test_allocation_failure_is_resource_error(self):
        memory = FailingMemoryManager(limit=0)
        with pytest.raises(DeviceResourceError, match="Allocation of 'input'"):
            memory.allocate((2, 2), "input")
        assert memory.allocations == 0


class TestRunLifecycle:

    def test_repeated_runs_leak_nothing(self, host_backend, odd_image):
        for _ in range(5):
            run_pipeline(odd_image, host_backend)
            assert host_backend.memory.live_allocations == 0
        # four image buffers plus the coefficient table per run
        assert host_backend.memory.allocations == 25
        assert host_backend.memory.releases == 25

    @pytest.mark.parametrize("limit", [0, 1, 2, 3])
    def test_allocation_failure_releases_earlier_buffers(self, odd_image, limit):
        memory = FailingMemoryManager(limit)
        backend = Backend(memory, HostEngine())
        with pytest.raises(DeviceResourceError):
            run_pipeline(odd_image, backend)
        assert memory.allocations == limit
        assert memory.live_allocations == 0

    def test_broadcast_failure_releases_buffers(self, odd_image, monkeypatch):
        memory = HostMemoryManager()

        def fail(table):
            raise MemoryError("constant memory exhausted")

        monkeypatch.setattr(memory, "_broadcast", fail)
        with pytest.raises(DeviceResourceError, match="broadcast"):
            run_pipeline(odd_image, Backend(memory, HostEngine()))
        assert memory.allocations == 4
        assert memory.live_allocations == 0

    @pytest.mark.parametrize("direction", ["upload", "download"])
    @pytest.mark.parametrize("error", [
        cl.RuntimeError("copy failed"),
        MemoryError("host memory exhausted"),
    ])
    def test_copy_failure_releases_everything(self, odd_image, direction, error):
        memory = FailingCopyMemoryManager(direction, error)
        with pytest.raises(DeviceResourceError, match=direction.capitalize()):
            run_pipeline(odd_image, Backend(memory, HostEngine()))
        assert memory.allocations == 5
        assert memory.live_allocations == 0

    def test_launch_failure_releases_everything(self, odd_image):
        memory = HostMemoryManager()
        with pytest.raises(DeviceResourceError, match="launch rejected"):
            run_pipeline(odd_image, Backend(memory, FailingEngine()))
        assert memory.allocations == 5
        assert memory.live_allocations == 0

    @pytest.mark.parametrize("image", [
        np.zeros((5, 7), dtype=np.float32),
        np.zeros((5, 7, 3), dtype=np.uint8),
        np.zeros((6, 7), dtype=np.uint8),
    ])
    def test_bad_input_touches_no_device_memory(self, host_backend, image):
        config = PipelineConfig(width=7, height=5, device="host")
        with pytest.raises(InputError):
            run_pipeline(image, host_backend, config)
        assert host_backend.memory.allocations == 0

    def test_all_zero_image_is_not_an_error(self, host_backend):
        result = run_pipeline(np.zeros((6, 6), dtype=np.uint8), host_backend)
        assert not result.convolved.any()
        assert not result.max_pooled.any()
