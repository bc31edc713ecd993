#!/usr/bin/env python3
"""
Convert an MNIST NPZ archive to the IDX files the trainer reads.

The trainer always reads ``data/images`` and ``data/labels``. This script
takes one split out of ``data/mnist.npz`` (arrays ``<split>_images`` of
flattened 28x28 images in [0, 1] and ``<split>_labels``) and writes it in
IDX format to those two paths.

Usage:
    python scripts/convert_npz_to_idx.py [--split train|val|test]

The script will:
1. Load the split from the NPZ archive
2. Write data/images and data/labels
3. Read both files back and verify them
"""

import argparse
import os
import sys
from typing import Tuple

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from digit_network.idx_format import (  # noqa: E402
    read_image_data,
    read_label_data,
    write_image_data,
    write_label_data,
)

IMAGE_SIDE = 28


def load_split(filepath: str, split: str) -> Tuple[np.ndarray, np.ndarray]:
    """
    Load one split of the NPZ archive.

    Parameters:
    -----------
    filepath : str
        Path to the mnist.npz file
    split : str
        One of 'train', 'val', 'test'

    Returns:
    --------
    tuple
        (images, labels); images laid out as [item, column, row]
    """
    print(f"📂 Loading '{split}' split from: {filepath}")

    with np.load(filepath) as data:
        flat_images = data[f'{split}_images']
        labels = data[f'{split}_labels'].astype(int)

    # Archive rows are row-major; the trainer indexes [item, column, row]
    images = flat_images.reshape(-1, IMAGE_SIDE, IMAGE_SIDE).transpose(0, 2, 1)

    print(f"✅ Loaded {len(images)} images")
    return images, labels


def write_idx(images: np.ndarray, labels: np.ndarray,
              images_path: str, labels_path: str) -> None:
    """Write the images and labels as IDX files."""
    print(f"\n💾 Writing IDX files: {images_path}, {labels_path}")
    os.makedirs(os.path.dirname(images_path), exist_ok=True)

    with open(images_path, 'wb') as f:
        write_image_data(f, images)
    with open(labels_path, 'wb') as f:
        write_label_data(f, labels)

    size = os.path.getsize(images_path) / (1024 * 1024)  # MB
    print(f"✅ Saved successfully (images: {size:.2f} MB)")


def verify_conversion(images: np.ndarray, labels: np.ndarray,
                      images_path: str, labels_path: str) -> bool:
    """
    Read the IDX files back and compare them with the source arrays.

    Pixels are quantized to bytes on write, so images are compared with a
    tolerance of half a grey level.
    """
    print(f"\n🔍 Verifying conversion...")

    with open(images_path, 'rb') as f:
        read_images = read_image_data(f)
    with open(labels_path, 'rb') as f:
        read_labels = read_label_data(f)

    assert read_images.shape == images.shape, "Image shapes don't match!"
    assert np.allclose(read_images, images, atol=0.5 / 255 + 1e-9), \
        "Images don't match!"
    assert np.array_equal(read_labels, labels), "Labels don't match!"

    print("✅ Verification passed!")
    return True


def main():
    """Main conversion function."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('--split', choices=['train', 'val', 'test'],
                        default='train')
    args = parser.parse_args()

    print("=" * 60)
    print("MNIST Data Format Converter")
    print("NPZ archive → IDX files")
    print("=" * 60)

    script_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(script_dir)
    data_dir = os.path.join(project_root, 'data')

    npz_path = os.path.join(data_dir, 'mnist.npz')
    images_path = os.path.join(data_dir, 'images')
    labels_path = os.path.join(data_dir, 'labels')

    if not os.path.exists(npz_path):
        print(f"❌ Error: NPZ file not found: {npz_path}")
        sys.exit(1)

    try:
        images, labels = load_split(npz_path, args.split)
        write_idx(images, labels, images_path, labels_path)
        verify_conversion(images, labels, images_path, labels_path)

        print("\n" + "=" * 60)
        print("✅ CONVERSION COMPLETE!")
        print("=" * 60)
        print(f"\n📝 Next steps:")
        print(f"   1. Train: python -m digit_network --train")
        print(f"   2. Evaluate: python -m digit_network")

    except Exception as e:
        print(f"\n❌ Error during conversion: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
