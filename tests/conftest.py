"""
Pytest configuration and shared fixtures for the descrambler tests.

Fixtures model a small, hand-written obfuscated player script, the watch page
that references it and an HLS master manifest. Optional settings overrides are
loaded from a ``.env`` file at the project root.
"""

import json
from pathlib import Path

import pytest
from dotenv import load_dotenv

from sigflow.cipher.catalog import reverse, swap
from sigflow.cipher.engine import CipherContextCache

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")

VIDEO_ID = "dQw4w9WgXcQ"
PLAYER_ID = "abcd1234"
JS_URL = f"https://www.youtube.com/s/player/{PLAYER_ID}/player_ias.vflset/en_US/base.js"
HLS_URL = "https://manifest.example.com/api/manifest/hls_variant/id/1/index.m3u8"
SIGNATURE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

PLAYER_JS = """
var window={};var navigator={userAgent:""};
var Xy={VP:function(a){a.reverse()},
eG:function(a,b){a.splice(0,b)},
li:function(a,b){var c=a[0];a[0]=a[b%a.length];a[b%a.length]=c}};
var pattern=/[}{]/g,ratio=1/2;
Ly=function(a){a=a.split("");Xy.VP(a,48);Xy.li(a,3);Xy.eG(a,2);return a.join("")};
var Wk=function(b,c,d){c&&d.set(b,encodeURIComponent(Ly(decodeURIComponent(c.s))))};
"""

HLS_MANIFEST = """#EXTM3U
#EXT-X-INDEPENDENT-SEGMENTS
#EXT-X-STREAM-INF:BANDWIDTH=1500000,CODECS="avc1.4d401f,mp4a.40.2",RESOLUTION=1280x720,FRAME-RATE=30
https://manifest.example.com/api/manifest/hls_playlist/expire/1/itag/95/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=4500000,CODECS="avc1.640028,mp4a.40.2",RESOLUTION=1920x1081,FRAME-RATE=29.97
/api/manifest/hls_playlist/expire/1/itag/96/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=300000,CODECS="avc1.4d400c,mp4a.40.5",RESOLUTION=426x240,FRAME-RATE=30
https://manifest.example.com/api/manifest/hls_playlist/expire/1/itag/abc/index.m3u8
"""


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


def _scramble(signature: str) -> str:
    """Inverse of the plan encoded in PLAYER_JS (reverse -> swap(3) -> splice(2))."""
    chars = list("xy" + signature)
    swap(chars, 3)
    reverse(chars)
    return "".join(chars)


@pytest.fixture
def scramble():
    return _scramble


@pytest.fixture
def player_js():
    return PLAYER_JS


@pytest.fixture
def hls_manifest():
    return HLS_MANIFEST


@pytest.fixture
def player_response():
    scrambled = _scramble(SIGNATURE)
    return {
        "videoDetails": {"videoId": VIDEO_ID, "title": "Sample video", "lengthSeconds": "212", "isLiveContent": False},
        "streamingData": {
            "expiresInSeconds": "21540",
            "formats": [
                {
                    "itag": 18,
                    "url": "https://rr1.example.com/videoplayback?id=1&sig=PRESIGNED",
                    "mimeType": 'video/mp4; codecs="avc1.42001E, mp4a.40.2"',
                    "quality": "medium",
                    "width": 640,
                    "height": 360,
                    "bitrate": 503000,
                    "fps": 30,
                }
            ],
            "adaptiveFormats": [
                {
                    "itag": 137,
                    "signatureCipher": f"s={scrambled}&sp=sig&url=https%3A%2F%2Frr1.example.com%2Fvideoplayback%3Fid%3D2",
                    "mimeType": 'video/mp4; codecs="avc1.640028"',
                    "quality": "hd1080",
                    "width": 1920,
                    "height": 1080,
                    "bitrate": 4400000,
                    "fps": 30,
                },
                {
                    "itag": 140,
                    "signatureCipher": "sp=sig&url=https%3A%2F%2Frr1.example.com%2Fvideoplayback%3Fid%3D3",
                    "mimeType": 'audio/mp4; codecs="mp4a.40.2"',
                    "audioQuality": "AUDIO_QUALITY_MEDIUM",
                    "bitrate": 130000,
                },
            ],
            "hlsManifestUrl": HLS_URL,
        },
    }


@pytest.fixture
def watch_html(player_response):
    return (
        "<html><head><script>"
        f'ytcfg.set({{"PLAYER_JS_URL":"/s/player/{PLAYER_ID}/player_ias.vflset/en_US/base.js"}});'
        "</script></head><body><script>"
        f"var ytInitialPlayerResponse = {json.dumps(player_response)};"
        "var meta = document.createElement('meta');"
        "</script></body></html>"
    )


@pytest.fixture
def cipher_cache():
    return CipherContextCache(maxsize=1, unsupported_players=["5352eb4f"])


@pytest.fixture
def fake_downloads(monkeypatch):
    """
    Replaces network downloads with an in-memory url -> text mapping.

    Returns the mapping together with the list of requested urls.
    """
    pages = {}
    requested = []

    async def _download(url, headers=None, client=None):
        from sigflow.utils.http_utils import DownloadError

        requested.append(url)
        if url not in pages:
            raise DownloadError(404, f"HTTP error 404 while downloading {url}")
        return pages[url]

    monkeypatch.setattr("sigflow.descrambler.fetcher.download_text_with_retry", _download)
    monkeypatch.setattr("sigflow.descrambler.pipeline.download_text_with_retry", _download)
    return pages, requested
