"""
Gaze Estimation Module
Image preparation, model invocation and display mapping for the
face + eyes + face-grid gaze model

Architecture:
- geometry:     Preview -> working-frame transforms, cm-per-pixel calibration, eye boxes
- marshaller:   RGBA -> normalised BGR float tensors, binary face-grid mask
- mean_store:   Lazily loaded face / left / right mean images
- inference:    GazeInferenceAdaptor over a TFLite interpreter (fixed input order)
- display:      Gaze vector (cm, camera frame) -> display pixel
- config:       GazeConfig and DeviceGeometry

Usage:
    config  = GazeConfig.for_model(224)
    adaptor = GazeInferenceAdaptor.create(config.model_path, config.label_path, config.input_size)
    mapper  = DisplayMapper(config.device, calibration.cm_per_display_px)
    gaze    = adaptor.recognize_gaze(face, left, right, grid)
    point   = mapper.map(GazeVector(*gaze[0]))
"""

from .config import GazeConfig, DeviceGeometry
from .geometry import (
    AffineTransform,
    DisplayMetrics,
    DistanceCalibration,
    Point,
    Rect,
    affine_from_preview_to_work,
    cal_distance_per_pixel,
    eye_bounding_rect,
)
from .marshaller import (
    BufferOverflowError,
    ChannelOrder,
    TensorBuffer,
    pack_argb,
    unpack_argb,
    write_grid_mask,
    write_rgb_normalized,
)
from .mean_store import MeanImageStore, MeanImageLoadError, get_mean_store
from .inference import GazeInferenceAdaptor, ModelLoadError, TFLiteEngine
from .display import DisplayMapper, DisplayPoint, GazeVector

__all__ = [
    'GazeConfig',
    'DeviceGeometry',
    'AffineTransform',
    'DisplayMetrics',
    'DistanceCalibration',
    'Point',
    'Rect',
    'affine_from_preview_to_work',
    'cal_distance_per_pixel',
    'eye_bounding_rect',
    'BufferOverflowError',
    'ChannelOrder',
    'TensorBuffer',
    'pack_argb',
    'unpack_argb',
    'write_grid_mask',
    'write_rgb_normalized',
    'MeanImageStore',
    'MeanImageLoadError',
    'get_mean_store',
    'GazeInferenceAdaptor',
    'ModelLoadError',
    'TFLiteEngine',
    'DisplayMapper',
    'DisplayPoint',
    'GazeVector',
]

__version__ = '1.0.0'
