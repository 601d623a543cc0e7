import asyncio
import base64
import os
import uuid
from io import BytesIO

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image, ImageDraw

from acquisition import ImageFetcher
from config import APIConfig
from errors import RemoteModelError
from main import create_app


def make_image_bytes(color=(255, 0, 0), size=(800, 1200), fmt="PNG") -> bytes:
    img = Image.new("RGB", size, color)
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def center_pixel(image_bytes: bytes):
    img = Image.open(BytesIO(image_bytes)).convert("RGB")
    return img.getpixel((img.width // 2, img.height // 2))


class ImageServer:
    """httpx.MockTransport handler serving images by URL."""

    def __init__(self):
        self.images = {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        data = self.images.get(url)
        if data is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=data, headers={"content-type": "image/png"})


class FakeModelManager:
    """Stands in for the hosted models; the try-on "composite" echoes the human image."""

    def __init__(self, result_dir):
        self.result_dir = result_dir
        self.tryon_calls = []
        self.classify_calls = []
        self.segment_calls = []
        self.fail = False
        self.delay = 0.0
        self.result_factory = None
        self.segments = None

    async def tryon(self, target, payload, scratch):
        self.tryon_calls.append((target, payload))
        if self.fail:
            raise RemoteModelError("Prediction on alexff91/FitMirror failed: Space is sleeping")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.result_factory is not None:
            return self.result_factory(payload)
        path = os.path.join(self.result_dir, f"{uuid.uuid4().hex}.jpg")
        with open(path, "wb") as f:
            f.write(payload.human.data)
        return (path, None)

    async def classify_garment(self, image):
        self.classify_calls.append(image)
        return [
            {"label": "cardigan", "score": 0.12},
            {"label": "jersey, T-shirt, tee shirt", "score": 0.81},
        ]

    async def segment_person(self, image):
        self.segment_calls.append(image)
        if self.segments is not None:
            return self.segments
        mask = Image.new("L", image.size, 0)
        ImageDraw.Draw(mask).rectangle([100, 50, 400, 500], fill=255)
        return [{"label": "person", "score": 0.99, "mask": mask}]

    def get_status(self) -> dict:
        return {"fake": True}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def api_config(tmp_path):
    return APIConfig(scratch_dir=str(tmp_path / "scratch"), gradio_temp_dir=str(tmp_path / "results"))


@pytest.fixture
def image_server():
    return ImageServer()


@pytest.fixture
def fetcher(api_config, image_server):
    client = httpx.AsyncClient(transport=httpx.MockTransport(image_server.handler))
    return ImageFetcher(api_config.fetch_timeout, api_config.max_upload_bytes, client=client)


@pytest.fixture
def fake_models(tmp_path):
    result_dir = tmp_path / "results"
    result_dir.mkdir()
    return FakeModelManager(str(result_dir))


@pytest.fixture
def app(api_config, fake_models, fetcher):
    return create_app(api_config, models=fake_models, fetcher=fetcher)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
