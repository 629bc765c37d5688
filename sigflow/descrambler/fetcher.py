import json
import logging
import re
from typing import Optional
from urllib.parse import urljoin

import httpx

from sigflow.cipher.engine import CipherContextCache, CipherEngine, cipher_cache
from sigflow.configs import settings
from sigflow.descrambler.pipeline import VideoDescrambler
from sigflow.exceptions import DescramblerError, ExtractionFailure, ScanFailure
from sigflow.schemas import PlayerResponse, VideoInfo
from sigflow.utils.http_utils import download_text_with_retry
from sigflow.utils.text_scanner import initial_player_response

logger = logging.getLogger(__name__)

VIDEO_ID_PATTERN = re.compile(r"^[0-9A-Za-z_-]{11}$")
VIDEO_URL_PATTERNS = [
    re.compile(r"(?:v=|vi=)([0-9A-Za-z_-]{11})"),
    re.compile(r"(?:youtu\.be/|/embed/|/shorts/|/live/|/v/)([0-9A-Za-z_-]{11})"),
]
JS_URL_PATTERNS = [
    re.compile(r'"jsUrl"\s*:\s*"([^"]+)"'),
    re.compile(r'"PLAYER_JS_URL"\s*:\s*"([^"]+)"'),
    re.compile(r"(/s/player/[\w-]+/[\w./-]+/base\.js)"),
]
PLAYER_ID_PATTERN = re.compile(r"/s/player/([\w-]+)/")
ADAPTIVE_FMTS_PATTERN = re.compile(r'"adaptive_fmts"\s*:\s*"([^"]*)"')


def extract_video_id(url: str) -> str:
    """Accepts a bare video id or any of the usual watch, short, embed and share URLs."""
    url = url.strip()
    if VIDEO_ID_PATTERN.match(url):
        return url
    for pattern in VIDEO_URL_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    raise DescramblerError(f"Could not find a video id in {url}")


def extract_js_url(watch_html: str) -> Optional[str]:
    for pattern in JS_URL_PATTERNS:
        match = pattern.search(watch_html)
        if match:
            return urljoin(settings.base_url, match.group(1).replace("\\/", "/"))
    return None


def extract_player_id(js_url: str) -> str:
    match = PLAYER_ID_PATTERN.search(js_url)
    return match.group(1) if match else js_url


class VideoFetcher:
    """Downloads the watch page and player script of a video and prepares a ``VideoDescrambler``."""

    def __init__(
        self,
        video_id: str,
        cache: Optional[CipherContextCache] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.video_id = video_id
        self.cache = cache or cipher_cache
        self.client = client

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "VideoFetcher":
        return cls(extract_video_id(url), **kwargs)

    @classmethod
    def from_id(cls, video_id: str, **kwargs) -> "VideoFetcher":
        if not VIDEO_ID_PATTERN.match(video_id):
            raise DescramblerError(f"{video_id!r} is not a valid video id")
        return cls(video_id, **kwargs)

    @property
    def watch_url(self) -> str:
        return settings.watch_url.format(video_id=self.video_id)

    async def fetch(self) -> VideoDescrambler:
        """
        Fetch everything needed to descramble the video.

        Raises:
            DownloadError: If the watch page or player script cannot be downloaded.
            ScanFailure: If the watch page embeds no player response.
            UnsupportedPlayer: If the player version is on the denylist.
        """
        watch_html = await download_text_with_retry(self.watch_url, client=self.client)
        video_info = self.parse_video_info(watch_html)

        engine = None
        js_url = extract_js_url(watch_html)
        if js_url is None:
            logger.warning(f"No player script referenced by {self.watch_url}; only pre-signed formats are usable")
        else:
            engine = await self.get_engine(js_url)

        return VideoDescrambler(
            video_info, engine=engine, player_id=extract_player_id(js_url) if js_url else None, client=self.client
        )

    def parse_video_info(self, watch_html: str) -> VideoInfo:
        raw_response = initial_player_response(watch_html)
        try:
            player_response = PlayerResponse.model_validate(json.loads(raw_response))
        except ValueError as e:
            raise ScanFailure(f"Embedded player response of {self.video_id} is not usable: {e}") from e

        return VideoInfo(player_response=player_response, adaptive_fmts_raw=self.parse_adaptive_fmts(watch_html))

    @staticmethod
    def parse_adaptive_fmts(watch_html: str) -> Optional[str]:
        """Legacy comma-joined format list, if the page still carries one."""
        match = ADAPTIVE_FMTS_PATTERN.search(watch_html)
        if not match:
            return None
        try:
            return json.loads(f'"{match.group(1)}"')
        except ValueError:
            logger.warning("Ignoring undecodable legacy adaptive_fmts value")
            return None

    async def get_engine(self, js_url: str) -> Optional[CipherEngine]:
        """Cipher for the player version behind ``js_url``; the script is only downloaded on a cache miss."""
        player_id = extract_player_id(js_url)
        try:
            context = self.cache.lookup(player_id)
            if context is None:
                logger.info(f"Downloading player {player_id} from {js_url}")
                js = await download_text_with_retry(js_url, client=self.client)
                context = self.cache.get(player_id, js)
        except ExtractionFailure as e:
            logger.warning(f"Player {player_id} is unsupported, ciphered formats will be dropped: {e}")
            return None
        return CipherEngine(context)
