"""
Gaze Inference Adaptor
Wraps a TFLite interpreter behind the fixed four-input / one-output gaze
model contract and owns the reusable input tensors.

Model contract:
    inputs  [right_eye 1xSxSx3, left_eye 1xSxSx3, face 1xSxSx3, grid 1x25x25x1]
    output  gaze 1x2 = (gx_cm, gy_cm) in the camera frame
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from .marshaller import (
    ChannelOrder,
    TensorBuffer,
    image_mean,
    pack_argb,
    resize_nearest,
    write_grid_mask,
    write_rgb_normalized,
)

logger = logging.getLogger(__name__)

# Positional input indices of the trained model
INPUT_RIGHT_EYE = 0
INPUT_LEFT_EYE  = 1
INPUT_FACE      = 2
INPUT_GRID      = 3

OUTPUT_GAZE = 0


class ModelLoadError(RuntimeError):
    """The model or its label file could not be loaded."""


class TFLiteEngine:
    """
    Inference engine backed by the TFLite interpreter.

    Inputs are fed by positional input index; outputs are copied into the
    caller's arrays keyed by output index.
    """

    def __init__(self, model_path: str, num_threads: int = 4):
        self.model_path = model_path
        self.num_threads = num_threads
        self.use_nnapi = False
        self.interpreter = None
        self._install(self._load(num_threads))

    def _load(self, num_threads: int):
        """Build and allocate a fresh interpreter without touching the current one."""
        try:
            from tflite_runtime.interpreter import Interpreter

            interpreter = Interpreter(model_path=self.model_path, num_threads=num_threads)
            interpreter.allocate_tensors()
        except Exception as e:
            logger.error(f"✗ Failed to load TFLite model {self.model_path}: {e}", exc_info=True)
            raise ModelLoadError(f"Cannot load model '{self.model_path}': {e}") from e
        return interpreter

    def _install(self, interpreter):
        self.interpreter = interpreter
        self.input_details = interpreter.get_input_details()
        self.output_details = interpreter.get_output_details()
        logger.info(
            f"✓ TFLite model loaded ({len(self.input_details)} inputs, "
            f"{len(self.output_details)} outputs, {self.num_threads} threads)"
        )

    def run(self, inputs: Sequence[TensorBuffer], outputs: Dict[int, np.ndarray]):
        """
        Run one inference.

        Args:
            inputs:  Buffers in model input order.
            outputs: Output index -> preallocated float array, filled in place.
        """
        if len(inputs) != len(self.input_details):
            raise ValueError(
                f"Model expects {len(self.input_details)} inputs, got {len(inputs)}"
            )

        for buffer, details in zip(inputs, self.input_details):
            tensor = buffer.as_array().reshape(details['shape'])
            self.interpreter.set_tensor(details['index'], tensor.astype(details['dtype'], copy=False))

        self.interpreter.invoke()

        for index, target in outputs.items():
            result = self.interpreter.get_tensor(self.output_details[index]['index'])
            target[...] = result.reshape(target.shape)

    def set_num_threads(self, num_threads: int):
        """
        Rebuild the interpreter with a new thread count.

        The running interpreter is kept if the rebuild fails.
        """
        if num_threads == self.num_threads:
            return
        interpreter = self._load(num_threads)
        self.num_threads = num_threads
        self._install(interpreter)

    def set_use_nnapi(self, use_nnapi: bool):
        self.use_nnapi = use_nnapi
        if use_nnapi:
            logger.warning("NNAPI delegate not available on this platform, running on CPU")


def load_labels(label_path: str) -> List[str]:
    """
    Read a label file, one label per line.

    The gaze path itself does not use labels.
    """
    try:
        with open(label_path, 'r', encoding='utf-8') as f:
            return [line.rstrip('\n') for line in f]
    except OSError as e:
        raise ModelLoadError(f"Cannot read label file '{label_path}': {e}") from e


class GazeInferenceAdaptor:
    """
    Fixed-contract front end to the gaze model.

    Pre-allocates one tensor per model input and rewrites all of them on every
    call. Not re-entrant: callers guarantee a single inference in flight.
    """

    def __init__(
            self,
            engine,
            input_size: int,
            is_quantized: bool = False,
            labels: Sequence[str] = (),
            grid_size: int = 25,
    ):
        """
        Args:
            engine:       Object with run(inputs, outputs), set_num_threads(n), set_use_nnapi(flag).
            input_size:   S, side length of face and eye tensors.
            is_quantized: Quantized models are not supported by the gaze path.
            labels:       Label list, unused by the gaze path.
            grid_size:    Side length of the face grid.
        """
        if is_quantized:
            raise ValueError("The gaze model path requires a float (non-quantized) model")
        if input_size <= 0:
            raise ValueError(f"input_size must be positive, got {input_size}")

        self.engine = engine
        self.input_size = input_size
        self.is_quantized = is_quantized
        self.labels = list(labels)
        self.grid_size = grid_size

        elements = input_size * input_size * 3
        self.right_buffer = TensorBuffer('right_eye', elements)
        self.left_buffer  = TensorBuffer('left_eye', elements)
        self.face_buffer  = TensorBuffer('face', elements)
        self.grid_buffer  = TensorBuffer('grid', grid_size * grid_size)

        self.inference_count = 0

    @classmethod
    def create(
            cls,
            model_path: str,
            label_path: Optional[str],
            input_size: int,
            is_quantized: bool = False,
            num_threads: int = 4,
    ) -> 'GazeInferenceAdaptor':
        """
        Load the model and labels and build an adaptor.

        Raises:
            ModelLoadError if the model or label file cannot be read.
        """
        labels = load_labels(label_path) if label_path else []
        engine = TFLiteEngine(model_path, num_threads=num_threads)
        return cls(engine, input_size, is_quantized=is_quantized, labels=labels)

    @property
    def input_buffers(self) -> List[TensorBuffer]:
        """Buffers in model input order: right, left, face, grid."""
        return [self.right_buffer, self.left_buffer, self.face_buffer, self.grid_buffer]

    def recognize_gaze(
            self,
            face: np.ndarray,
            left: np.ndarray,
            right: np.ndarray,
            grid: np.ndarray,
    ) -> np.ndarray:
        """
        Estimate the gaze vector for one frame.

        Args:
            face:  RGBA face crop, any size.
            left:  RGBA left-eye crop, any size.
            right: RGBA right-eye crop, any size.
            grid:  RGBA binary face grid.

        Returns:
            float32 array of shape (1, 2): (gx_cm, gy_cm).
        """
        size = self.input_size

        face_px  = pack_argb(resize_nearest(face, size))
        left_px  = pack_argb(resize_nearest(left, size))
        right_px = pack_argb(resize_nearest(right, size))
        grid_px  = pack_argb(resize_nearest(grid, self.grid_size))

        # Per-image scalar means, not the mean-image assets
        write_rgb_normalized(self.face_buffer, face_px, size, image_mean(face_px), ChannelOrder.BGR)
        write_rgb_normalized(self.right_buffer, right_px, size, image_mean(right_px), ChannelOrder.BGR)
        write_rgb_normalized(self.left_buffer, left_px, size, image_mean(left_px), ChannelOrder.BGR)
        write_grid_mask(self.grid_buffer, grid_px, self.grid_size)

        recognized = np.zeros((1, 2), dtype=np.float32)
        self.engine.run(self.input_buffers, {OUTPUT_GAZE: recognized})
        self.inference_count += 1

        logger.debug(f"Gaze estimate x={recognized[0, 0]:.3f} cm, y={recognized[0, 1]:.3f} cm")
        return recognized

    def set_num_threads(self, num_threads: int):
        self.engine.set_num_threads(num_threads)

    def set_use_nnapi(self, use_nnapi: bool):
        self.engine.set_use_nnapi(use_nnapi)

    def __repr__(self):
        return f"<GazeInferenceAdaptor(S={self.input_size}, inferences={self.inference_count})>"
