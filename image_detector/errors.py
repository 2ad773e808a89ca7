"""Error taxonomy shared by all flows.

Every error carries the HTTP status and the short ``error`` code used in
``{"error": ..., "details": ...}`` responses.
"""

from enum import Enum


class DetectorError(Exception):
    code = "detector_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DetectorError):
    code = "validation_error"
    status_code = 422


class DecodeError(DetectorError):
    code = "decode_error"
    status_code = 422


class ModelLoadError(DetectorError):
    code = "model_load_error"
    status_code = 502


class CameraErrorKind(str, Enum):
    NO_DEVICE = "no_device"
    PERMISSION_DENIED = "permission_denied"
    DEVICE_BUSY = "device_busy"
    OTHER = "other"


_CAMERA_MESSAGES = {
    CameraErrorKind.NO_DEVICE: "No camera found on this device.",
    CameraErrorKind.PERMISSION_DENIED: "Camera access denied. Please allow camera access.",
    CameraErrorKind.DEVICE_BUSY: "Camera is already in use by another application.",
}


class CameraAccessError(DetectorError):
    code = "camera_access_error"
    status_code = 503

    def __init__(self, kind: CameraErrorKind, detail: str = ""):
        if kind is CameraErrorKind.OTHER:
            message = f"Camera error: {detail or 'unknown error'}"
        else:
            message = _CAMERA_MESSAGES[kind]
        super().__init__(message)
        self.kind = kind
        self.detail = detail


class SessionAlreadyActiveError(DetectorError):
    code = "camera_session_active"
    status_code = 409

    def __init__(self, message: str = "Camera is already running. Capture or stop it first."):
        super().__init__(message)


class AlreadyInProgressError(DetectorError):
    code = "already_in_progress"
    status_code = 409


class PreconditionError(DetectorError):
    code = "precondition_error"
    status_code = 400


class PredictionError(DetectorError):
    code = "prediction_error"
    status_code = 502
