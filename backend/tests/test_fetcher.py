import asyncio
import threading

import httpx
import pytest

from utils.errors import FetchError, FetchTimeout
from utils import fetcher as fetcher_module
from utils.fetcher import SourceFetcher

SOURCE_URL = "https://source.test/videos/u1/clip.mov"


async def test_streams_body_to_disk(tmp_path):
    body = b"\x00\x01video" * 100_000
    fetcher = SourceFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body)))
    dest = tmp_path / "input.mp4"

    written = await fetcher.fetch(SOURCE_URL, str(dest), timeout=5)

    assert written == len(body)
    assert dest.read_bytes() == body


async def test_disk_flush_runs_off_the_event_loop(tmp_path, monkeypatch):
    flush_threads = []
    original = fetcher_module._flush_to_disk

    def recording_flush(f):
        flush_threads.append(threading.get_ident())
        original(f)

    monkeypatch.setattr(fetcher_module, "_flush_to_disk", recording_flush)
    body = b"frame" * 200_000
    fetcher = SourceFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body)))
    dest = tmp_path / "input.mp4"

    await fetcher.fetch(SOURCE_URL, str(dest), timeout=5)

    assert len(flush_threads) == 1
    assert flush_threads[0] != threading.get_ident()
    assert dest.read_bytes() == body


async def test_forwards_authorization_header(tmp_path):
    seen = {}

    def handler(request):
        seen["authorization"] = request.headers.get("authorization")
        return httpx.Response(200, content=b"data")

    fetcher = SourceFetcher(transport=httpx.MockTransport(handler))
    await fetcher.fetch(SOURCE_URL, str(tmp_path / "in.mp4"), timeout=5, authorization="Bearer abc.def.ghi")

    assert seen["authorization"] == "Bearer abc.def.ghi"


async def test_sends_no_authorization_when_absent(tmp_path):
    seen = {}

    def handler(request):
        seen["has_auth"] = "authorization" in request.headers
        return httpx.Response(200, content=b"data")

    await SourceFetcher(transport=httpx.MockTransport(handler)).fetch(SOURCE_URL, str(tmp_path / "in.mp4"), timeout=5)

    assert seen["has_auth"] is False


async def test_http_error_status_raises_fetch_error(tmp_path):
    fetcher = SourceFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(404)))

    with pytest.raises(FetchError, match="HTTP 404") as excinfo:
        await fetcher.fetch(SOURCE_URL, str(tmp_path / "in.mp4"), timeout=5)

    assert not isinstance(excinfo.value, FetchTimeout)


async def test_connection_error_raises_fetch_error(tmp_path):
    def handler(request):
        raise httpx.ConnectError("Name or service not known", request=request)

    with pytest.raises(FetchError, match="Name or service not known"):
        await SourceFetcher(transport=httpx.MockTransport(handler)).fetch(SOURCE_URL, str(tmp_path / "in.mp4"), timeout=5)


async def test_unresponsive_source_times_out(tmp_path):
    async def handler(request):
        await asyncio.sleep(10)
        return httpx.Response(200, content=b"too late")

    with pytest.raises(FetchTimeout, match="timed out"):
        await SourceFetcher(transport=httpx.MockTransport(handler)).fetch(
            SOURCE_URL, str(tmp_path / "in.mp4"), timeout=0.2
        )


async def test_transport_timeout_raises_fetch_timeout(tmp_path):
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(FetchTimeout):
        await SourceFetcher(transport=httpx.MockTransport(handler)).fetch(SOURCE_URL, str(tmp_path / "in.mp4"), timeout=5)
