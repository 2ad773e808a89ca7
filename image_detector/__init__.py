"""
Teachable Machine image detector service:
- upload: validate and decode user images into the current image
- camera: single-use webcam sessions with live MJPEG view and snapshot
- model_loader / classifier: hosted model download and ONNX inference
- detection / render: sorted predictions with progress-bar rendering
- main: FastAPI app wiring the flows to HTTP endpoints
"""
