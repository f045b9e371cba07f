"""
Mean Image Store
Lazily materialises the face / left / right mean images from packaged assets
"""

import logging
import os
import shutil
import tempfile
import threading
from typing import Dict, Optional

import numpy as np

logger = logging.getLogger(__name__)

MEAN_NAMES = ('face_mean', 'left_mean', 'right_mean')


class MeanImageLoadError(RuntimeError):
    """A mean image asset could not be read. Inference cannot proceed."""


class MeanImageStore:
    """
    Three named mean-image slots, filled once on first demand.

    Each asset is copied verbatim into the cache directory the first time it
    is needed, then memory-mapped from there as a .npy array. Arrays are
    never mutated after loading.
    """

    def __init__(self, asset_dir: str, cache_dir: str):
        """
        Args:
            asset_dir: Directory holding face_mean.npy, left_mean.npy, right_mean.npy.
            cache_dir: Per-process cache directory for the materialised copies.
        """
        self.asset_dir = asset_dir
        self.cache_dir = cache_dir
        self._arrays: Dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> np.ndarray:
        """
        Return the mean image `name`, loading it on first use.

        Args:
            name: One of face_mean, left_mean, right_mean.

        Returns:
            Read-only float array.

        Raises:
            KeyError for an unknown name.
            MeanImageLoadError if the asset cannot be read.
        """
        if name not in MEAN_NAMES:
            raise KeyError(f"Unknown mean image '{name}', expected one of {MEAN_NAMES}")

        array = self._arrays.get(name)
        if array is not None:
            return array

        with self._lock:
            if name not in self._arrays:
                self._arrays[name] = self._materialise(name)
            return self._arrays[name]

    def load_all(self) -> Dict[str, np.ndarray]:
        """Load every slot; returns name -> array."""
        return {name: self.get(name) for name in MEAN_NAMES}

    def is_loaded(self, name: str) -> bool:
        return name in self._arrays

    def _materialise(self, name: str) -> np.ndarray:
        filename = f"{name}.npy"
        cached = os.path.join(self.cache_dir, filename)

        try:
            if not os.path.exists(cached):
                self._copy_asset(filename, cached)
            try:
                array = np.load(cached, mmap_mode='r', allow_pickle=False)
            except (EOFError, ValueError) as e:
                # Unreadable cached copy, refresh it from the asset once
                logger.warning(f"Cached {filename} is corrupt ({e}), copying it again")
                self._copy_asset(filename, cached)
                array = np.load(cached, mmap_mode='r', allow_pickle=False)
        except (OSError, EOFError, ValueError) as e:
            logger.error(f"✗ Failed to load mean image {name}: {e}", exc_info=True)
            raise MeanImageLoadError(f"Cannot load mean image '{name}': {e}") from e

        logger.info(f"✓ Mean image {name} loaded, shape={array.shape}, dtype={array.dtype}")
        return array

    def _copy_asset(self, filename: str, cached: str):
        """Copy an asset into the cache; the cached name only ever holds a complete file."""
        os.makedirs(self.cache_dir, exist_ok=True)
        fd, partial = tempfile.mkstemp(prefix=f".{filename}.", dir=self.cache_dir)
        os.close(fd)
        try:
            shutil.copyfile(os.path.join(self.asset_dir, filename), partial)
            os.replace(partial, cached)
        except OSError:
            os.unlink(partial)
            raise
        logger.info(f"Copied {filename} into {self.cache_dir}")

    def __repr__(self):
        loaded = [name for name in MEAN_NAMES if name in self._arrays]
        return f"<MeanImageStore(loaded={loaded})>"


# Process-wide store - lazy, created on first demand
_store: Optional[MeanImageStore] = None
_store_lock = threading.Lock()


def get_mean_store(asset_dir: str, cache_dir: str) -> MeanImageStore:
    """
    Get the process-wide MeanImageStore (lazy initialisation).

    The directories of the first call win; later calls return the same store.
    """
    global _store

    with _store_lock:
        if _store is None:
            _store = MeanImageStore(asset_dir, cache_dir)
        return _store
