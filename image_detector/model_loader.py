"""Model load flow: fetch the hosted model resources and build a ModelHandle."""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from image_detector.classifier import DEFAULT_IMAGE_SIZE, ModelHandle
from image_detector.config import MODEL_FETCH_TIMEOUT_S, MODEL_URL, ONNX_MODEL_FILE
from image_detector.errors import ModelLoadError
from image_detector.state import AppState

logger = logging.getLogger(__name__)

SessionFactory = Callable[[bytes], Any]


def _onnx_session(model_bytes: bytes) -> Any:
    import onnxruntime as ort

    # CPU-only for maximum portability
    return ort.InferenceSession(model_bytes, providers=["CPUExecutionProvider"])


def compose_model_urls(base_url: str, onnx_file: str = ONNX_MODEL_FILE) -> Tuple[str, str, str]:
    """Return (model.json, metadata.json, onnx graph) locations under ``base_url``."""
    return base_url + "model.json", base_url + "metadata.json", base_url + onnx_file


TF_JS_ONLY_HOSTS = ("teachablemachine.withgoogle.com",)


def check_model_url(base_url: Optional[str]) -> str:
    """
    Reject model locations that can never yield an ONNX graph.

    Raised before any request is made so a misconfigured service fails fast.
    """
    if not base_url:
        raise ModelLoadError(
            "MODEL_URL is not set. Point it at an export that hosts "
            f"model.json, metadata.json and {ONNX_MODEL_FILE}"
        )
    parsed = urlparse(base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ModelLoadError(f"Invalid model URL: {base_url!r}")
    if parsed.hostname in TF_JS_ONLY_HOSTS:
        raise ModelLoadError(
            f"{parsed.hostname} hosts only the TF.js export. Convert the model to ONNX "
            f"and host model.json, metadata.json and {ONNX_MODEL_FILE} together"
        )
    return base_url


def _fetch(http: requests.Session, url: str, timeout: float) -> requests.Response:
    try:
        response = http.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise ModelLoadError(f"Failed to fetch {url}: {e}") from e
    logger.info("[MODEL] GET %s -> %s", url, response.status_code)
    if not response.ok:
        raise ModelLoadError(f"HTTP {response.status_code}: {response.reason} ({url})")
    return response


def _parse_json(response: requests.Response, name: str) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as e:
        raise ModelLoadError(f"Malformed {name}: {e}") from e
    if not isinstance(payload, dict):
        raise ModelLoadError(f"Malformed {name}: expected a JSON object")
    return payload


def _slash_hint(http: requests.Session, base_url: str, timeout: float) -> Optional[str]:
    """Try ``base_url + '/model.json'`` when the configured URL lacks its trailing slash."""
    if base_url.endswith("/"):
        return None
    alt_url = base_url + "/model.json"
    logger.info("[MODEL] Trying alternative URL: %s", alt_url)
    try:
        response = http.get(alt_url, timeout=timeout)
    except requests.RequestException as e:
        logger.info("[MODEL] Alternative also failed: %s", e)
        return None
    if response.ok:
        return "Try adding a trailing '/' to MODEL_URL"
    return None


def _labels_from_metadata(metadata: Dict[str, Any]) -> List[str]:
    labels = metadata.get("labels")
    if labels is None:
        return []
    if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
        raise ModelLoadError("Malformed metadata.json: 'labels' must be a list of strings")
    return labels


def _image_size_from_metadata(metadata: Dict[str, Any]) -> int:
    size = metadata.get("imageSize")
    if size is None:
        return DEFAULT_IMAGE_SIZE
    # bool is an int subclass; reject it along with floats and strings
    if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
        raise ModelLoadError("Malformed metadata.json: 'imageSize' must be a positive integer")
    return size


def _output_width(session: Any) -> Optional[int]:
    shape = list(session.get_outputs()[0].shape or [])
    if shape and isinstance(shape[-1], int):
        return shape[-1]
    return None


def load_model(
    base_url: str = MODEL_URL,
    http: Optional[requests.Session] = None,
    timeout: float = MODEL_FETCH_TIMEOUT_S,
    onnx_file: str = ONNX_MODEL_FILE,
    session_factory: Optional[SessionFactory] = None,
) -> ModelHandle:
    """
    Blocking model load.

    model.json is fetched first so that an unreachable model surfaces its HTTP
    status before anything else is downloaded.
    """
    check_model_url(base_url)
    http = http or requests.Session()
    session_factory = session_factory or _onnx_session
    model_url, metadata_url, onnx_url = compose_model_urls(base_url, onnx_file)

    start = time.time()
    logger.info("[MODEL] Loading model from %s", base_url)

    try:
        topology = _parse_json(_fetch(http, model_url, timeout), "model.json")
    except ModelLoadError as e:
        hint = _slash_hint(http, base_url, timeout)
        if hint:
            raise ModelLoadError(f"{e.message}. {hint}") from e
        raise
    if "modelTopology" not in topology and "weightsManifest" not in topology:
        raise ModelLoadError("Malformed model.json: no modelTopology or weightsManifest")

    metadata = _parse_json(_fetch(http, metadata_url, timeout), "metadata.json")
    labels = _labels_from_metadata(metadata)
    image_size = _image_size_from_metadata(metadata)

    graph = _fetch(http, onnx_url, timeout).content
    try:
        session = session_factory(graph)
    except Exception as e:
        raise ModelLoadError(f"Failed to initialize model graph from {onnx_url}: {e}") from e

    width = _output_width(session)
    if not labels:
        if width is None:
            raise ModelLoadError("metadata.json has no labels and the model output size is dynamic")
        labels = [f"Class {i + 1}" for i in range(width)]
    elif width is not None and width != len(labels):
        raise ModelLoadError(
            f"Model outputs {width} classes but metadata.json lists {len(labels)} labels"
        )

    handle = ModelHandle(
        base_url=base_url,
        session=session,
        labels=labels,
        image_size=image_size,
        metadata=metadata,
    )
    logger.info(
        "[MODEL] Loaded in %sms: %s classes, image_size=%s, labels=%s",
        round((time.time() - start) * 1000, 2),
        len(labels),
        image_size,
        labels,
    )
    return handle


async def load_model_into(
    state: AppState,
    base_url: str = MODEL_URL,
    loader: Callable[[str], ModelHandle] = load_model,
) -> ModelHandle:
    """Load a model and make it the active one. A failed load keeps the previous model."""
    async with state.operation("model load"):
        try:
            handle = await asyncio.to_thread(loader, base_url)
        except ModelLoadError as e:
            logger.error("[MODEL] Load failed: %s", e.message)
            raise
        state.model = handle
        return handle
