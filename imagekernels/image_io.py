"""
Image decode/encode with Pillow.
"""

import os

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import InputError


def load_grayscale(image_path, width, height):
    """Load an image as a (height, width) uint8 grayscale array"""
    try:
        with Image.open(image_path) as img:
            if img.mode != 'L':
                img = img.convert('L')
            img_array = np.array(img, dtype=np.uint8)
    except FileNotFoundError as e:
        raise InputError(f"Image file '{image_path}' not found!") from e
    except (UnidentifiedImageError, OSError) as e:
        raise InputError(f"Cannot decode image '{image_path}': {e}") from e

    if img_array.shape != (height, width):
        raise InputError(
            f"Image '{image_path}' is {img_array.shape[1]}x{img_array.shape[0]}, "
            f"expected {width}x{height}")
    return img_array


def array_to_image(arr):
    """Convert a 2D uint8 NumPy array to a grayscale PIL Image"""
    return Image.fromarray(np.ascontiguousarray(arr, dtype=np.uint8))


def save_results(result, output_dir=".", fmt="png", prefix=""):
    """Write convolved / maxpooled / minpooled images; returns the paths."""
    os.makedirs(output_dir, exist_ok=True)
    paths = []
    for name, output in result.outputs().items():
        filename = os.path.join(output_dir, f"{prefix}{name}.{fmt}")
        array_to_image(output).save(filename)
        paths.append(filename)
    return paths
