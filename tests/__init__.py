"""Shared test utilities."""

import base64
import io
import json

from PIL import Image


class FakeResponse:
    """The part of ``aiohttp.ClientResponse`` the fetcher relies on."""

    def __init__(self, status=200, body=b"", headers=None):
        self.status = status
        self.body = body if isinstance(body, bytes) else json.dumps(body).encode()
        self.headers = headers or {}

    async def read(self):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """Routes GET requests to canned responses; unknown URLs answer 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self.routes.get(url, FakeResponse(status=404))
        if isinstance(response, BaseException):
            raise response
        return response

    def urls(self):
        return [url for url, _ in self.calls]


def minimal_style(**extra):
    style = {"version": 8, "sources": {}, "layers": []}
    style.update(extra)
    return style


def png_bytes(width=2, height=3, color=(255, 0, 0, 255)):
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_data_url(**kwargs):
    encoded = base64.b64encode(png_bytes(**kwargs)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def decode_png(data):
    return Image.open(io.BytesIO(data))
