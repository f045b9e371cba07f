"""
Tensor Marshaller
Packs RGBA images into the flat float tensors the gaze model consumes
"""

import enum
import logging
from typing import Optional, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)

IMAGE_MAX = 255.0

# Packed 0xAARRGGBB values of the binarised face grid
GRID_BLACK = 0xFF000000
GRID_WHITE = 0xFFFFFFFF


class BufferOverflowError(RuntimeError):
    """Raised when a write would run past a TensorBuffer's capacity."""


class ChannelOrder(enum.Enum):
    """
    Per-pixel channel write order, expressed as bit shifts into a packed
    0xAARRGGBB pixel. BGR is the order the gaze model was trained with.
    """

    BGR = (0, 8, 16)
    RGB = (16, 8, 0)

    @property
    def shifts(self):
        return self.value


class TensorBuffer:
    """
    Fixed-capacity float32 tensor in native byte order with a write marker.

    The marker is rewound before every fill; capacity never changes after
    construction.
    """

    BYTES_PER_FLOAT = 4

    def __init__(self, name: str, element_count: int):
        if element_count <= 0:
            raise ValueError(f"TensorBuffer '{name}' needs a positive size")
        self.name = name
        self._data = np.zeros(element_count, dtype=np.float32)
        self.position = 0

    @property
    def capacity(self) -> int:
        """Capacity in floats."""
        return self._data.size

    @property
    def nbytes(self) -> int:
        """Capacity in bytes."""
        return self._data.nbytes

    @property
    def bytes_written(self) -> int:
        return self.position * self.BYTES_PER_FLOAT

    def rewind(self):
        self.position = 0

    def put(self, values: np.ndarray):
        """
        Append floats at the marker.

        Args:
            values: Array of any shape, written in C order.

        Raises:
            BufferOverflowError if the buffer would overflow.
        """
        flat = np.asarray(values, dtype=np.float32).ravel()
        end = self.position + flat.size
        if end > self.capacity:
            raise BufferOverflowError(
                f"TensorBuffer '{self.name}' overflow: {end} > {self.capacity} floats"
            )
        self._data[self.position:end] = flat
        self.position = end

    def as_array(self) -> np.ndarray:
        """Whole backing array (not a copy)."""
        return self._data

    def tobytes(self) -> bytes:
        return self._data.tobytes()

    def __repr__(self):
        return f"<TensorBuffer({self.name}, {self.bytes_written}/{self.nbytes} bytes)>"


# ---------------------------------------------------------------------------
# Pixel packing
# ---------------------------------------------------------------------------

def pack_argb(rgba: np.ndarray) -> np.ndarray:
    """
    Pack an (H, W, 4) uint8 RGBA image into (H, W) uint32 0xAARRGGBB pixels.

    Args:
        rgba: RGBA image.

    Returns:
        Packed pixel array.
    """
    rgba = np.asarray(rgba)
    if rgba.ndim != 3 or rgba.shape[2] != 4:
        raise ValueError(f"Expected an (H, W, 4) RGBA image, got shape {rgba.shape}")
    channels = rgba.astype(np.uint32)
    return (
        (channels[..., 3] << 24)
        | (channels[..., 0] << 16)
        | (channels[..., 1] << 8)
        | channels[..., 2]
    )


def unpack_argb(pixels: np.ndarray) -> np.ndarray:
    """Inverse of pack_argb."""
    pixels = np.asarray(pixels, dtype=np.uint32)
    return np.stack([
        (pixels >> 16) & 0xFF,
        (pixels >> 8) & 0xFF,
        pixels & 0xFF,
        (pixels >> 24) & 0xFF,
    ], axis=-1).astype(np.uint8)


def _channels(pixels: np.ndarray, order: ChannelOrder) -> np.ndarray:
    """Nx3 float32 array of channel values in [0, 1], in write order."""
    flat = np.asarray(pixels, dtype=np.uint32).ravel()
    return np.stack(
        [((flat >> shift) & 0xFF) for shift in order.shifts],
        axis=-1,
    ).astype(np.float32) / np.float32(IMAGE_MAX)


def image_mean(pixels: np.ndarray) -> np.float32:
    """
    Scalar mean over R, G and B of every pixel, normalised to [0, 1].

    Args:
        pixels: Packed 0xAARRGGBB pixels.

    Returns:
        The per-image mean as float32.
    """
    return np.float32(_channels(pixels, ChannelOrder.RGB).mean(dtype=np.float64))


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------

def write_rgb_normalized(
        dst: TensorBuffer,
        pixels: np.ndarray,
        size: int,
        mean: Union[float, np.ndarray, None] = None,
        order: ChannelOrder = ChannelOrder.BGR
) -> int:
    """
    Write `size` x `size` pixels as mean-subtracted floats in `order`.

    Args:
        dst:    Destination buffer, rewound before writing.
        pixels: size*size packed 0xAARRGGBB pixels, row-major.
        size:   Side length S.
        mean:   Scalar mean, or a mean image of shape (S, S, 3) indexed in
                write order. None computes the per-image scalar mean.
        order:  Channel write order.

    Returns:
        Number of bytes written (always S*S*3*4).
    """
    pixels = np.asarray(pixels)
    if pixels.size != size * size:
        raise ValueError(f"Expected {size * size} pixels, got {pixels.size}")

    if mean is None:
        mean = image_mean(pixels)

    values = _channels(pixels, order)
    if np.ndim(mean) == 0:
        values = values - np.float32(mean)
    else:
        mean_image = np.asarray(mean, dtype=np.float32)
        if mean_image.size != size * size * 3:
            raise ValueError(
                f"Mean image has {mean_image.size} values, expected {size * size * 3}"
            )
        values = values - mean_image.reshape(-1, 3)

    dst.rewind()
    dst.put(values)
    return dst.bytes_written


def write_grid_mask(dst: TensorBuffer, pixels: np.ndarray, grid_size: int = 25) -> int:
    """
    Write the binary face grid as 0.0 (black) / 1.0 (white) floats.

    Pixels that are neither pure black nor pure white are skipped, so a
    grid that was not binarised writes fewer than grid_size**2 floats.

    Args:
        dst:       Destination buffer, rewound before writing.
        pixels:    grid_size*grid_size packed pixels, row-major.
        grid_size: Side length of the grid.

    Returns:
        Number of floats written.
    """
    flat = np.asarray(pixels, dtype=np.uint32).ravel()
    if flat.size != grid_size * grid_size:
        raise ValueError(f"Expected {grid_size * grid_size} grid pixels, got {flat.size}")

    binary = flat[(flat == GRID_BLACK) | (flat == GRID_WHITE)]
    skipped = flat.size - binary.size
    if skipped:
        logger.warning(f"Face grid has {skipped} non-binary pixels, skipped")

    dst.rewind()
    dst.put((binary == GRID_WHITE).astype(np.float32))
    return binary.size


def resize_nearest(image: np.ndarray, width: int, height: Optional[int] = None) -> np.ndarray:
    """Nearest-neighbour rescale, as used at training time."""
    height = width if height is None else height
    return cv2.resize(image, (width, height), interpolation=cv2.INTER_NEAREST)
