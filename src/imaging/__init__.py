"""
Image decoding and preprocessing.
"""

from .preprocessor import (
    ImagePreprocessor,
    PreprocessedImage,
    decode_image,
    encode_data_uri,
    compute_resize_dimensions,
    normalize_lighting,
)

__all__ = [
    "ImagePreprocessor",
    "PreprocessedImage",
    "decode_image",
    "encode_data_uri",
    "compute_resize_dimensions",
    "normalize_lighting",
]
