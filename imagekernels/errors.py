"""Exceptions raised by imagekernels."""


class ImageKernelsError(Exception):
    """Base class for all errors raised by this package."""


class InputError(ImageKernelsError):
    """Bad input image, bad argument or bad coefficient table.

    Always raised before any device buffer is allocated.
    """


class DeviceResourceError(ImageKernelsError):
    """Device allocation, copy, build or launch failed.

    Raised after every buffer acquired by the run has been released.
    """
