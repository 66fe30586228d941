"""
Run configuration: reference image size, work-group size and the 3x3
coefficient table broadcast to every convolution work-item.
"""

from dataclasses import dataclass, field

import numpy as np

from .errors import InputError

# Reference configuration
WIDTH = 640
HEIGHT = 480
LOCAL_SIZE = (16, 16)  # work-items per work-group (x, y)

DEVICES = ("auto", "gpu", "cpu", "host")


@dataclass(frozen=True)
class CoefficientTable:
    """Immutable 3x3 filter weights, row-major, rounded to float32."""

    weights: tuple

    def __post_init__(self):
        values = np.asarray(self.weights, dtype=np.float32)
        if values.size != 9:
            raise InputError(
                f"Coefficient table must hold 9 weights (3x3), got {values.size}")
        object.__setattr__(self, "weights",
                           tuple(float(v) for v in values.ravel()))

    @classmethod
    def from_array(cls, array):
        """Build a table from a 3x3 nested sequence or array."""
        try:
            values = np.asarray(array, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise InputError(f"Coefficient table is not numeric: {e}") from e
        if values.shape != (3, 3):
            raise InputError(
                f"Coefficient table must be 3x3, got shape {values.shape}")
        return cls(tuple(values.ravel()))

    @classmethod
    def from_file(cls, path):
        """Load a 3x3 table from a text file (whitespace or comma separated)."""
        try:
            with open(path) as f:
                text = f.read().replace(",", " ")
            rows = [line.split() for line in text.splitlines() if line.strip()]
            values = np.array(rows, dtype=np.float32)
        except OSError as e:
            raise InputError(f"Cannot read coefficient file '{path}': {e}") from e
        except ValueError as e:
            raise InputError(f"Malformed coefficient file '{path}': {e}") from e
        return cls.from_array(values)

    def as_array(self):
        """Read-only float32 (3, 3) view of the weights."""
        values = np.array(self.weights, dtype=np.float32).reshape(3, 3)
        values.flags.writeable = False
        return values

    def __getitem__(self, index):
        dy, dx = index
        return self.weights[dy * 3 + dx]


# center 5, four-neighbours -1, corners 0
SHARPEN = CoefficientTable.from_array([[0, -1, 0],
                                       [-1, 5, -1],
                                       [0, -1, 0]])


@dataclass(frozen=True)
class PipelineConfig:
    width: int = WIDTH
    height: int = HEIGHT
    local_size: tuple = LOCAL_SIZE
    coefficients: CoefficientTable = field(default=SHARPEN)
    device: str = "auto"

    def __post_init__(self):
        if self.width < 1 or self.height < 1:
            raise InputError(
                f"Image size must be positive, got {self.width}x{self.height}")
        if self.device not in DEVICES:
            raise InputError(
                f"Unknown device '{self.device}', expected one of {', '.join(DEVICES)}")

    @property
    def image_shape(self):
        return (self.height, self.width)

    @property
    def pooled_shape(self):
        return pooled_shape(self.width, self.height)


def pooled_shape(width, height):
    """(rows, cols) of a 2x2 pooled output: floor(H/2) x floor(W/2)."""
    return (height // 2, width // 2)


def round_up(value, multiple):
    return ((value + multiple - 1) // multiple) * multiple


def launch_grid(extent, local_size=LOCAL_SIZE):
    """Global size covering ``extent`` (x, y), padded to whole work-groups."""
    return tuple(round_up(n, m) for n, m in zip(extent, local_size))


def convolution_extent(width, height):
    return (width, height)


def pooling_extent(width, height):
    # ceil division, so odd sizes get one padding unit per axis
    return ((width + 1) // 2, (height + 1) // 2)
