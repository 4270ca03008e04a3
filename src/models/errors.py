"""
Error taxonomy for the detection pipeline.

Every surfaced failure derives from DetectionError so callers can catch the
whole family, or dispatch on the concrete stage that failed.
"""


class DetectionError(Exception):
    """Base class for detection pipeline failures."""


class ModelLoadFailed(DetectionError):
    """A detection model (generic or custom) could not be loaded."""


class ImageDecodeFailed(DetectionError):
    """Input bytes could not be decoded into a pixel buffer."""


class PreprocessFailed(DetectionError):
    """Resize, lighting normalization or tensor conversion failed."""


class InferenceFailed(DetectionError):
    """Local model inference or the remote inference API failed."""


class AnnotationFailed(DetectionError):
    """Rendering the annotated output image failed."""


class DetectionTimeout(DetectionError):
    """A background detection request received no response in time."""


class WorkerFatal(DetectionError):
    """The background worker died; pending requests were rejected."""
