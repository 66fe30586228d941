"""
OpenCL platform and device discovery.
"""

import os

import pyopencl as cl

from .errors import DeviceResourceError


def get_opencl_device_info(device):
    """Summary of an OpenCL device"""
    info = {
        'name': device.name.strip(),
        'type': cl.device_type.to_string(device.type),
        'vendor': device.vendor.strip(),
        'version': device.version,
        'max_compute_units': device.max_compute_units,
        'max_work_group_size': device.max_work_group_size,
        'max_clock_frequency': device.max_clock_frequency,
        'global_mem_size': device.global_mem_size / (1024**3),  # GB
        'local_mem_size': device.local_mem_size / 1024,  # KB
        'max_constant_buffer_size': device.max_constant_buffer_size / 1024,  # KB
    }
    return info


def list_devices():
    """(platform name, device info) for every device on every platform."""
    try:
        platforms = cl.get_platforms()
    except cl.Error:
        # the ICD loader raises when no platform is installed
        return []

    devices = []
    for platform in platforms:
        try:
            platform_devices = platform.get_devices()
        except cl.Error:
            continue
        for device in platform_devices:
            devices.append((platform.name.strip(), get_opencl_device_info(device)))
    return devices


def _first_device(device_type):
    try:
        platforms = cl.get_platforms()
    except cl.Error:
        platforms = []
    for platform in platforms:
        try:
            devices = platform.get_devices(device_type=device_type)
        except cl.Error:
            continue
        if devices:
            return devices[0]
    return None


def select_device(preference="auto"):
    """Pick a device: 'gpu', 'cpu' or 'auto' (GPU if present, else CPU)."""
    if preference == "gpu":
        order = [cl.device_type.GPU]
    elif preference == "cpu":
        order = [cl.device_type.CPU]
    else:
        order = [cl.device_type.GPU, cl.device_type.CPU, cl.device_type.ALL]

    for device_type in order:
        device = _first_device(device_type)
        if device is not None:
            return device

    raise DeviceResourceError(f"No OpenCL {preference} device found!")


def setup_opencl(preference="auto"):
    """Setup OpenCL context and profiling queue"""
    try:
        if preference == "auto" and os.environ.get("PYOPENCL_CTX"):
            context = cl.create_some_context(interactive=False)
            device = context.devices[0]
        else:
            device = select_device(preference)
            context = cl.Context([device])
        queue = cl.CommandQueue(
            context, properties=cl.command_queue_properties.PROFILING_ENABLE)
    except cl.Error as e:
        raise DeviceResourceError(f"OpenCL setup failed: {e}") from e

    return context, queue, device
