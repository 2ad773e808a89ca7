import asyncio
import json

import numpy as np
import pytest
import requests

from conftest import FakeModel, FakeOnnxSession
from image_detector.errors import ModelLoadError
from image_detector.model_loader import check_model_url, compose_model_urls, load_model, load_model_into

BASE = "https://models.example/abc123/"

TOPOLOGY = {"modelTopology": {"class_name": "Sequential"}, "weightsManifest": []}
METADATA = {"labels": ["cat", "dog", "bird"], "imageSize": 224, "tfjsVersion": "1.3.1"}


class FakeResponse:
    def __init__(self, status_code=200, body=b"", reason="OK"):
        self.status_code = status_code
        self.reason = reason
        self.content = body if isinstance(body, bytes) else json.dumps(body).encode()

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return json.loads(self.content.decode())


class FakeHttp:
    def __init__(self, routes):
        self.routes = routes
        self.requested = []

    def get(self, url, timeout=None):
        self.requested.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, b"not found", reason="Not Found")
        if isinstance(route, Exception):
            raise route
        return route


def _routes(base=BASE, topology=TOPOLOGY, metadata=METADATA):
    return {
        base + "model.json": FakeResponse(200, topology),
        base + "metadata.json": FakeResponse(200, metadata),
        base + "model.onnx": FakeResponse(200, b"onnx-bytes"),
    }


def _factory(output=((0.1, 0.6, 0.3),), output_shape=(1, 3)):
    graphs = []

    def factory(graph):
        graphs.append(graph)
        return FakeOnnxSession(output, output_shape=output_shape)

    factory.graphs = graphs
    return factory


def test_compose_model_urls():
    assert compose_model_urls(BASE) == (
        BASE + "model.json",
        BASE + "metadata.json",
        BASE + "model.onnx",
    )


def test_load_model_builds_handle():
    http = FakeHttp(_routes())
    factory = _factory()

    handle = load_model(BASE, http=http, session_factory=factory)

    assert handle.base_url == BASE
    assert handle.labels == ("cat", "dog", "bird")
    assert handle.image_size == 224
    assert factory.graphs == [b"onnx-bytes"]
    assert http.requested[0] == BASE + "model.json"


def test_http_error_status_is_surfaced():
    routes = _routes()
    routes[BASE + "model.json"] = FakeResponse(403, b"", reason="Forbidden")

    with pytest.raises(ModelLoadError) as exc:
        load_model(BASE, http=FakeHttp(routes), session_factory=_factory())

    assert "HTTP 403: Forbidden" in exc.value.message


def test_network_error_is_surfaced():
    routes = _routes()
    routes[BASE + "model.json"] = requests.ConnectionError("connection refused")

    with pytest.raises(ModelLoadError) as exc:
        load_model(BASE, http=FakeHttp(routes), session_factory=_factory())

    assert "connection refused" in exc.value.message


def test_missing_trailing_slash_gets_hint():
    base = BASE.rstrip("/")
    http = FakeHttp(_routes())

    with pytest.raises(ModelLoadError) as exc:
        load_model(base, http=http, session_factory=_factory())

    assert "HTTP 404" in exc.value.message
    assert "trailing '/'" in exc.value.message
    assert http.requested == [base + "model.json", base + "/model.json"]


def test_malformed_metadata():
    routes = _routes()
    routes[BASE + "metadata.json"] = FakeResponse(200, b"{not json")

    with pytest.raises(ModelLoadError) as exc:
        load_model(BASE, http=FakeHttp(routes), session_factory=_factory())

    assert "metadata.json" in exc.value.message


def test_model_json_without_topology():
    with pytest.raises(ModelLoadError):
        load_model(BASE, http=FakeHttp(_routes(topology={"foo": 1})), session_factory=_factory())


def test_label_count_mismatch():
    with pytest.raises(ModelLoadError) as exc:
        load_model(
            BASE,
            http=FakeHttp(_routes()),
            session_factory=_factory(output=((0.5, 0.5),), output_shape=(1, 2)),
        )

    assert "2 classes" in exc.value.message


def test_missing_labels_fall_back_to_class_names():
    handle = load_model(
        BASE,
        http=FakeHttp(_routes(metadata={"imageSize": 96})),
        session_factory=_factory(),
    )

    assert handle.labels == ("Class 1", "Class 2", "Class 3")
    assert handle.image_size == 96


def test_graph_init_failure():
    def broken(graph):
        raise RuntimeError("invalid protobuf")

    with pytest.raises(ModelLoadError) as exc:
        load_model(BASE, http=FakeHttp(_routes()), session_factory=broken)

    assert "invalid protobuf" in exc.value.message


def test_failed_load_keeps_previous_model(state):
    previous = FakeModel()
    state.model = previous

    def loader(url):
        raise ModelLoadError("HTTP 500: Internal Server Error")

    with pytest.raises(ModelLoadError):
        asyncio.run(load_model_into(state, BASE, loader))

    assert state.model is previous
    assert state.busy is None


def test_successful_load_replaces_model(state):
    handle = load_model(BASE, http=FakeHttp(_routes()), session_factory=_factory())

    loaded = asyncio.run(load_model_into(state, BASE, lambda url: handle))

    assert loaded is handle
    assert state.model is handle
    preds = handle.predict(np.zeros((50, 80, 3), dtype=np.uint8))
    assert [p.label for p in preds] == ["cat", "dog", "bird"]


@pytest.mark.parametrize("image_size", ["large", [224], {"w": 1}, 0, -5, True, 12.5])
def test_malformed_image_size(image_size):
    metadata = dict(METADATA, imageSize=image_size)

    with pytest.raises(ModelLoadError) as exc:
        load_model(BASE, http=FakeHttp(_routes(metadata=metadata)), session_factory=_factory())

    assert exc.value.message == "Malformed metadata.json: 'imageSize' must be a positive integer"


def test_malformed_image_size_keeps_previous_model(state):
    previous = FakeModel()
    state.model = previous
    http = FakeHttp(_routes(metadata=dict(METADATA, imageSize="large")))

    with pytest.raises(ModelLoadError):
        asyncio.run(
            load_model_into(state, BASE, lambda url: load_model(url, http=http, session_factory=_factory()))
        )

    assert state.model is previous


@pytest.mark.parametrize(
    "url,fragment",
    [
        ("", "MODEL_URL is not set"),
        (None, "MODEL_URL is not set"),
        ("models/abc/", "Invalid model URL"),
        ("https://teachablemachine.withgoogle.com/models/PDP2vtgBM/", "hosts only the TF.js export"),
    ],
)
def test_unusable_model_url_fails_before_fetching(url, fragment):
    http = FakeHttp(_routes())

    with pytest.raises(ModelLoadError) as exc:
        load_model(url, http=http, session_factory=_factory())

    assert fragment in exc.value.message
    assert http.requested == []


def test_check_model_url_accepts_http_base():
    assert check_model_url(BASE) == BASE
