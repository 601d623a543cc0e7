import base64
from io import BytesIO

import pytest
from PIL import Image

from conftest import make_image_bytes
from errors import FetchError, RemoteModelError
from relay import OutputFormat, PredictionResult, ResultRelay


def test_from_raw_shapes():
    assert PredictionResult.from_raw(("/tmp/out.webp", "/tmp/mask.png")).reference == "/tmp/out.webp"
    assert PredictionResult.from_raw([{"url": "https://x.test/o.png", "path": "/p"}]).reference == "https://x.test/o.png"
    assert PredictionResult.from_raw({"data": [{"path": "/tmp/o.png"}]}).reference == "/tmp/o.png"
    assert PredictionResult.from_raw(b"\x89PNG").is_inline
    assert PredictionResult.from_raw([None, {}]).reference is None


@pytest.mark.anyio
async def test_resolve_local_path(tmp_path, fetcher):
    path = tmp_path / "out.png"
    path.write_bytes(b"image-bytes")
    relay = ResultRelay(fetcher, [str(tmp_path)])
    assert await relay.resolve_bytes(PredictionResult.from_raw((str(path), None))) == b"image-bytes"


@pytest.mark.anyio
async def test_local_paths_outside_download_dir_are_refused(tmp_path, fetcher):
    downloads = tmp_path / "gradio"
    downloads.mkdir()
    secret = tmp_path / "secret.txt"
    secret.write_bytes(b"api-key=hunter2")
    relay = ResultRelay(fetcher, [str(downloads)])

    with pytest.raises(RemoteModelError) as excinfo:
        await relay.resolve_bytes(PredictionResult.from_raw((str(secret), None)))
    assert "hunter2" not in excinfo.value.message

    # Traversal out of the download directory resolves to the same file
    with pytest.raises(RemoteModelError):
        await relay.resolve_bytes(PredictionResult.from_raw(str(downloads / ".." / "secret.txt")))


@pytest.mark.anyio
async def test_resolve_url_and_failure(image_server, fetcher):
    image_server.images["https://results.test/ok.png"] = b"remote"
    relay = ResultRelay(fetcher)
    assert await relay.resolve_bytes(PredictionResult.from_raw([{"url": "https://results.test/ok.png"}])) == b"remote"

    with pytest.raises(FetchError):
        await relay.resolve_bytes(PredictionResult.from_raw([{"url": "https://results.test/gone.png"}]))


@pytest.mark.anyio
async def test_resolve_without_image(fetcher):
    relay = ResultRelay(fetcher)
    with pytest.raises(RemoteModelError):
        await relay.resolve_bytes(PredictionResult.from_raw([None]))
    with pytest.raises(RemoteModelError):
        await relay.resolve_bytes(PredictionResult.from_raw("no such file"))


@pytest.mark.anyio
async def test_render_formats(fetcher):
    jpeg = make_image_bytes(fmt="JPEG", size=(40, 60))
    result = PredictionResult.from_raw(jpeg)
    relay = ResultRelay(fetcher)

    as_json = await relay.render(result, OutputFormat.JSON)
    assert as_json.media_type == "application/json"

    as_b64 = await relay.render(result, OutputFormat.BASE64)
    assert b'"result"' in as_b64.body

    media = await relay.render(result, OutputFormat.MEDIA)
    assert media.media_type == "image/png"
    assert Image.open(BytesIO(media.body)).format == "PNG"


@pytest.mark.anyio
async def test_render_media_rejects_non_image(fetcher):
    relay = ResultRelay(fetcher)
    with pytest.raises(RemoteModelError):
        await relay.render(PredictionResult.from_raw(b"not an image"), OutputFormat.MEDIA)


@pytest.mark.anyio
async def test_base64_rejects_fetched_non_image(image_server, fetcher):
    image_server.images["http://results.test/err.html"] = b"<html>Space error page</html>"
    relay = ResultRelay(fetcher)
    with pytest.raises(RemoteModelError, match="undecodable image"):
        await relay.render(PredictionResult.from_raw([{"url": "http://results.test/err.html"}]), OutputFormat.BASE64)
