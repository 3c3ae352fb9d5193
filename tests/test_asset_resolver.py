"""
Tests for remote asset resolution.

Network traffic is served by httpx.MockTransport handlers.

Test cases:
1. Direct download, extension selection
2. Redirect chains leave only the final file
3. Drive confirmation interstitial
4. Non-public / HTTP errors / timeouts / hop limit
5. Batch resolution is all-or-nothing
"""

import asyncio
from pathlib import Path

import httpx
import pytest

from mediamux.exceptions import ResolutionError
from mediamux.services.asset_resolver import (
    AssetResolver,
    MediaReference,
    OriginKind,
    is_indirect_link,
    to_direct_download_url,
    with_query_param,
)

VIDEO_HEADERS = {"content-type": "video/mp4"}


def _resolver(temp_dir: Path, handler, **kwargs) -> AssetResolver:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AssetResolver(temp_dir, client=client, **kwargs)


class TestLinkHelpers:
    """URL rewriting helpers."""

    def test_file_path_link(self):
        url = "https://drive.google.com/file/d/1AbC_d-9/view?usp=sharing"
        assert to_direct_download_url(url) == (
            "https://drive.google.com/uc?export=download&id=1AbC_d-9"
        )

    def test_open_id_link(self):
        url = "https://drive.google.com/open?id=XYZ123"
        assert to_direct_download_url(url) == "https://drive.google.com/uc?export=download&id=XYZ123"

    def test_unrecognised_link_unchanged(self):
        url = "https://drive.google.com/drive/folders"
        assert to_direct_download_url(url) == url

    def test_is_indirect_link(self):
        assert is_indirect_link("https://drive.google.com/file/d/abc/view")
        assert not is_indirect_link("https://example.com/drive.google.com/video.mp4")

    def test_with_query_param_replaces(self):
        url = with_query_param("https://h/uc?id=1&confirm=old", "confirm", "new")
        assert "confirm=new" in url
        assert "confirm=old" not in url
        assert "id=1" in url


class TestResolve:
    """Single reference resolution."""

    @pytest.mark.asyncio
    async def test_direct_download(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers=VIDEO_HEADERS, content=b"x" * 100)

        async with _resolver(temp_dir, handler) as resolver:
            asset = await resolver.resolve("https://cdn.example.com/media/clip.MOV")

        assert asset.local_path.exists()
        assert asset.local_path.parent == temp_dir
        assert asset.local_path.name.startswith("download_")
        assert asset.local_path.suffix == ".mov"
        assert asset.byte_size == 100
        assert asset.origin_kind == OriginKind.DIRECT

    @pytest.mark.asyncio
    async def test_extension_hint_and_generic_default(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers=VIDEO_HEADERS, content=b"data")

        async with _resolver(temp_dir, handler) as resolver:
            hinted = await resolver.resolve(MediaReference("https://cdn.example.com/stream", "webm"))
            generic = await resolver.resolve("https://cdn.example.com/stream")

        assert hinted.local_path.suffix == ".webm"
        assert generic.local_path.suffix == ".bin"

    @pytest.mark.asyncio
    async def test_three_redirects_leave_one_file(self, temp_dir):
        hops = {
            "/start": "/hop1",
            "/hop1": "https://other.example.com/hop2",
            "/hop2": "/final.mp4",
        }
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            target = hops.get(request.url.path)
            if target:
                return httpx.Response(301, headers={"location": target})
            return httpx.Response(200, headers=VIDEO_HEADERS, content=b"final")

        async with _resolver(temp_dir, handler) as resolver:
            asset = await resolver.resolve("https://cdn.example.com/start")

        assert seen[-1] == "https://other.example.com/final.mp4"
        assert len(seen) == 4
        assert list(temp_dir.iterdir()) == [asset.local_path]
        assert asset.local_path.read_bytes() == b"final"
        assert asset.local_path.suffix == ".mp4"

    @pytest.mark.asyncio
    async def test_drive_confirmation_flow(self, temp_dir):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.params.get("confirm") == "t0K-3n_":
                return httpx.Response(200, headers=VIDEO_HEADERS, content=b"video")
            page = '<html><a href="/uc?export=download&amp;confirm=t0K-3n_&amp;id=ABC">Download anyway</a></html>'
            return httpx.Response(200, headers={"content-type": "text/html; charset=utf-8"}, text=page)

        async with _resolver(temp_dir, handler) as resolver:
            asset = await resolver.resolve("https://drive.google.com/file/d/ABC/view?usp=sharing")

        assert requests[0].url.params["id"] == "ABC"
        assert requests[0].url.path == "/uc"
        assert len(requests) == 2
        assert asset.origin_kind == OriginKind.CONFIRMED_INDIRECT
        assert asset.local_path.suffix == ".mp4"
        assert list(temp_dir.iterdir()) == [asset.local_path]

    @pytest.mark.asyncio
    async def test_drive_confirmation_from_cookie(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("confirm") == "ck_TOKEN":
                return httpx.Response(200, headers=VIDEO_HEADERS, content=b"video")
            return httpx.Response(
                200,
                headers=[
                    ("content-type", "text/html"),
                    ("set-cookie", "download_warning_13058876669334088843_ABC=ck_TOKEN; Path=/uc"),
                ],
                text="<html>Google Drive can't scan this file for viruses.</html>",
            )

        async with _resolver(temp_dir, handler) as resolver:
            asset = await resolver.resolve("https://drive.google.com/file/d/ABC/view")

        assert asset.origin_kind == OriginKind.CONFIRMED_INDIRECT
        assert asset.local_path.read_bytes() == b"video"

    @pytest.mark.asyncio
    async def test_drive_confirmation_from_form_field(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("confirm") == "t":
                return httpx.Response(200, headers=VIDEO_HEADERS, content=b"video")
            page = (
                '<form id="download-form" action="https://drive.usercontent.google.com/download">'
                '<input type="hidden" name="id" value="ABC">'
                '<input type="hidden" name="confirm" value="t"></form>'
            )
            return httpx.Response(200, headers={"content-type": "text/html"}, text=page)

        async with _resolver(temp_dir, handler) as resolver:
            asset = await resolver.resolve("https://drive.google.com/file/d/ABC/view")

        assert asset.origin_kind == OriginKind.CONFIRMED_INDIRECT

    @pytest.mark.asyncio
    async def test_html_without_token_not_public(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"content-type": "text/html"},
                text="<html>Sign in to continue</html>",
            )

        async with _resolver(temp_dir, handler) as resolver:
            with pytest.raises(ResolutionError) as exc_info:
                await resolver.resolve("https://drive.google.com/file/d/ABC/view")

        assert exc_info.value.code == "NOT_PUBLICLY_ACCESSIBLE"
        assert "not be publicly accessible" in exc_info.value.message
        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_html_token_ignored_for_other_hosts(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-type": "text/html"}, text="confirm=abc")

        async with _resolver(temp_dir, handler) as resolver:
            with pytest.raises(ResolutionError) as exc_info:
                await resolver.resolve("https://cdn.example.com/video.mp4")

        assert exc_info.value.code == "NOT_PUBLICLY_ACCESSIBLE"

    @pytest.mark.asyncio
    async def test_http_error_status(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text="missing")

        async with _resolver(temp_dir, handler) as resolver:
            with pytest.raises(ResolutionError) as exc_info:
                await resolver.resolve("https://cdn.example.com/missing.mp4")

        assert exc_info.value.http_status == 404
        assert exc_info.value.message == "Failed to download: HTTP 404"
        assert exc_info.value.status_code == 422
        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_hop_limit(self, temp_dir):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(302, headers={"location": "/loop"})

        async with _resolver(temp_dir, handler, max_hops=3) as resolver:
            with pytest.raises(ResolutionError) as exc_info:
                await resolver.resolve("https://cdn.example.com/loop")

        assert exc_info.value.code == "TOO_MANY_REDIRECTS"
        assert exc_info.value.retryable is True
        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with _resolver(temp_dir, handler) as resolver:
            with pytest.raises(ResolutionError) as exc_info:
                await resolver.resolve("https://cdn.example.com/slow.mp4")

        assert exc_info.value.code == "RESOLUTION_TIMEOUT"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_interrupted_stream_removes_partial_file(self, temp_dir):
        async def body():
            yield b"first chunk"
            raise httpx.ReadError("connection reset")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers=VIDEO_HEADERS, content=body())

        async with _resolver(temp_dir, handler) as resolver:
            with pytest.raises(ResolutionError, match="Download failed"):
                await resolver.resolve("https://cdn.example.com/clip.mp4")

        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_invalid_url(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with _resolver(temp_dir, handler) as resolver:
            with pytest.raises(ResolutionError, match="Invalid URL"):
                await resolver.resolve("ftp://cdn.example.com/clip.mp4")


class TestResolveMany:
    """Batch resolution."""

    @pytest.mark.asyncio
    async def test_empty_batch_does_no_io(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with _resolver(temp_dir, handler) as resolver:
            assert await resolver.resolve_many([]) == []

    @pytest.mark.asyncio
    async def test_batch_preserves_order(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers=VIDEO_HEADERS, content=request.url.path.encode())

        async with _resolver(temp_dir, handler) as resolver:
            assets = await resolver.resolve_many(
                ["https://cdn.example.com/a.mp4", "https://cdn.example.com/b.mp4"]
            )

        assert [a.local_path.read_bytes() for a in assets] == [b"/a.mp4", b"/b.mp4"]

    @pytest.mark.asyncio
    async def test_batch_failure_removes_completed_downloads(self, temp_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/bad.mp4":
                return httpx.Response(500)
            return httpx.Response(200, headers=VIDEO_HEADERS, content=b"ok")

        async with _resolver(temp_dir, handler) as resolver:
            with pytest.raises(ResolutionError):
                await resolver.resolve_many(
                    [
                        "https://cdn.example.com/good.mp4",
                        "https://cdn.example.com/bad.mp4",
                        "https://cdn.example.com/also-good.mp4",
                    ]
                )

        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_batch_failure_cancels_download_in_progress(self, temp_dir):
        first_chunk_written = asyncio.Event()
        partial_files = []

        async def slow_body():
            yield b"first chunk"
            first_chunk_written.set()
            await asyncio.Event().wait()

        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/bad.mp4":
                await first_chunk_written.wait()
                partial_files.extend(temp_dir.iterdir())
                return httpx.Response(500)
            return httpx.Response(200, headers=VIDEO_HEADERS, content=slow_body())

        async with _resolver(temp_dir, handler) as resolver:
            with pytest.raises(ResolutionError):
                await asyncio.wait_for(
                    resolver.resolve_many(
                        ["https://cdn.example.com/slow.mp4", "https://cdn.example.com/bad.mp4"]
                    ),
                    timeout=5,
                )

        assert len(partial_files) == 1
        assert list(temp_dir.iterdir()) == []
