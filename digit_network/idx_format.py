"""
idx_format.py
~~~~~~~~~~~~~

Reader and writer for the IDX files the MNIST digit set is distributed in.

Both files start with a big-endian 32-bit magic number followed by
big-endian 32-bit dimension counts and a raw unsigned byte payload:

- images: magic 0x00000803, then item, row and column counts
- labels: magic 0x00000801, then the item count

Image pixels are scaled to [0, 1] and stored indexed as
``[item, column, row]``. That is the transpose of the on-disk reading order;
snapshots trained on this layout depend on it, so it is kept as is.
:func:`get_input_data` flattens an image back to row-major order.
"""

import logging
import struct
from typing import BinaryIO

import numpy as np

logger = logging.getLogger(__name__)

IMAGE_MAGIC = 0x00000803
LABEL_MAGIC = 0x00000801

_UINT32 = struct.Struct('>I')


class DatasetFormatError(IOError):
    """Raised when a dataset file is not valid IDX data."""


class DatasetMismatchError(ValueError):
    """Raised when the image and label files disagree on the item count."""


def _read_uint32(stream: BinaryIO) -> int:
    data = stream.read(_UINT32.size)
    if len(data) != _UINT32.size:
        raise DatasetFormatError("Unexpected end of file in header")
    return _UINT32.unpack(data)[0]


def _read_payload(stream: BinaryIO, size: int) -> np.ndarray:
    # Counts come from the header and may exceed the file size
    data = stream.read()
    if len(data) < size:
        raise DatasetFormatError(
            f"Expected {size} payload bytes, got {len(data)}"
        )
    return np.frombuffer(data[:size], dtype=np.uint8)


def read_image_data(stream: BinaryIO) -> np.ndarray:
    """
    Read an IDX image file.

    Args:
        stream: Binary stream positioned at the start of the file

    Returns:
        Float array of shape (items, columns, rows) with values in [0, 1]

    Raises:
        DatasetFormatError: If the magic number is wrong or the file is short
    """
    magic = _read_uint32(stream)
    if magic != IMAGE_MAGIC:
        raise DatasetFormatError(f"Invalid magic number for images: {magic:#x}")

    image_count = _read_uint32(stream)
    row_count = _read_uint32(stream)
    column_count = _read_uint32(stream)

    pixels = _read_payload(stream, image_count * row_count * column_count)
    images = pixels.reshape(image_count, row_count, column_count) / 255.0

    logger.debug(
        f"Read {image_count} images of {row_count}x{column_count} pixels"
    )
    return np.ascontiguousarray(images.transpose(0, 2, 1))


def read_label_data(stream: BinaryIO) -> np.ndarray:
    """
    Read an IDX label file.

    Returns:
        Integer array with one class index per item

    Raises:
        DatasetFormatError: If the magic number is wrong or the file is short
    """
    magic = _read_uint32(stream)
    if magic != LABEL_MAGIC:
        raise DatasetFormatError(f"Invalid magic number for labels: {magic:#x}")

    label_count = _read_uint32(stream)
    labels = _read_payload(stream, label_count).astype(int)

    logger.debug(f"Read {label_count} labels")
    return labels


def write_image_data(stream: BinaryIO, images: np.ndarray) -> None:
    """
    Write images laid out as ``[item, column, row]`` in [0, 1] to IDX format.

    Inverse of :func:`read_image_data`. Values are rounded to the nearest
    byte.
    """
    image_count, column_count, row_count = images.shape
    stream.write(_UINT32.pack(IMAGE_MAGIC))
    for count in (image_count, row_count, column_count):
        stream.write(_UINT32.pack(count))

    pixels = np.rint(np.clip(images, 0.0, 1.0) * 255.0).astype(np.uint8)
    stream.write(pixels.transpose(0, 2, 1).tobytes())


def write_label_data(stream: BinaryIO, labels: np.ndarray) -> None:
    """Write class indices (0-255) to IDX label format."""
    labels = np.asarray(labels)
    stream.write(_UINT32.pack(LABEL_MAGIC))
    stream.write(_UINT32.pack(len(labels)))
    stream.write(labels.astype(np.uint8).tobytes())


def load_dataset(images_path: str, labels_path: str):
    """
    Read an image file and its label file and check they agree.

    Returns:
        (images, labels) as produced by the readers

    Raises:
        DatasetFormatError: If either file is malformed
        DatasetMismatchError: If the item counts differ
    """
    with open(images_path, 'rb') as f:
        images = read_image_data(f)
    with open(labels_path, 'rb') as f:
        labels = read_label_data(f)

    if len(labels) != len(images):
        raise DatasetMismatchError(
            f"Image/label count mismatch: {len(images)} images, "
            f"{len(labels)} labels"
        )

    logger.info(
        f"Loaded {len(images)} samples of "
        f"{images.shape[1]}x{images.shape[2]} pixels"
    )
    return images, labels


def get_input_data(images: np.ndarray, index: int) -> np.ndarray:
    """
    Flatten one image into a network input vector.

    Pixel (column x, row y) lands at position ``y * width + x``.
    """
    # images[index].T is indexed [row, column]
    return images[index].T.flatten()


def one_hot(label: int, size: int) -> np.ndarray:
    """Expected output vector with a 1 at ``label`` and 0 elsewhere."""
    expected = np.zeros(size)
    if 0 <= label < size:
        expected[label] = 1.0
    return expected
