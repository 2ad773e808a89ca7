import os


def _parse_cors_origins(raw: str) -> list[str]:
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or ["*"]


CORS_ORIGINS = _parse_cors_origins(os.getenv("CORS_ORIGINS", "*"))
ALLOW_ALL_ORIGINS = CORS_ORIGINS == ["*"]

# -----------------------------------
# Model configuration
# -----------------------------------

# MODEL_URL: base URL of the hosted model export (no default).
# model.json, metadata.json and ONNX_MODEL_FILE are resolved relative to it, so keep the trailing "/".
# teachablemachine.withgoogle.com serves only the TF.js files; host the ONNX conversion next to them elsewhere.
MODEL_URL = os.getenv("MODEL_URL", "")

# ONNX_MODEL_FILE: ONNX conversion of the model, hosted next to model.json
ONNX_MODEL_FILE = os.getenv("ONNX_MODEL_FILE", "model.onnx")

# MODEL_FETCH_TIMEOUT_S: per-request timeout when downloading model resources
MODEL_FETCH_TIMEOUT_S = float(os.getenv("MODEL_FETCH_TIMEOUT_S", "30"))

# AUTO_LOAD_MODEL: load MODEL_URL on service startup instead of waiting for POST /model/load
AUTO_LOAD_MODEL = os.getenv("AUTO_LOAD_MODEL", "false").lower() == "true"

# PREDICT_TIMEOUT_S: upper bound for a single prediction call (0 = disabled)
PREDICT_TIMEOUT_S = float(os.getenv("PREDICT_TIMEOUT_S", "0"))

# -----------------------------------
# Upload / display configuration
# -----------------------------------

# MAX_UPLOAD_BYTES: uploads above this size are rejected (default 5 MiB)
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

# DISPLAY_MAX_WIDTH / DISPLAY_MAX_HEIGHT: bound of the preview surface
DISPLAY_MAX_WIDTH = int(os.getenv("DISPLAY_MAX_WIDTH", "600"))
DISPLAY_MAX_HEIGHT = int(os.getenv("DISPLAY_MAX_HEIGHT", "400"))

# PREVIEW_JPEG_QUALITY: quality of /preview and /camera/stream frames
PREVIEW_JPEG_QUALITY = int(os.getenv("PREVIEW_JPEG_QUALITY", "85"))

# -----------------------------------
# Camera configuration
# -----------------------------------

# CAMERA_INDEX: OpenCV device index of the preferred (rear-facing) camera
CAMERA_INDEX = int(os.getenv("CAMERA_INDEX", "0"))

# CAMERA_WIDTH / CAMERA_HEIGHT: requested resolution; the driver may deliver another one
CAMERA_WIDTH = int(os.getenv("CAMERA_WIDTH", "640"))
CAMERA_HEIGHT = int(os.getenv("CAMERA_HEIGHT", "480"))

# STREAM_FPS: frame rate of the MJPEG live view
STREAM_FPS = float(os.getenv("STREAM_FPS", "15"))

# -----------------------------------
# Result rendering
# -----------------------------------

# RESULT_DECIMALS: decimals in rendered percentages ("70.0%")
RESULT_DECIMALS = int(os.getenv("RESULT_DECIMALS", "1"))
