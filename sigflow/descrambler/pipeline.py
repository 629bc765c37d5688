"""
Turns the raw format records of a player response into playable streams.

Formats come in two flavours. Pre-signed formats already carry a valid
delivery URL and are passed through untouched. Ciphered formats carry a raw
signature ``s`` next to the URL; the signature is run through the cipher of
the player version that served the page and appended to the URL under the
``sp`` parameter name. HLS manifest variants need no signature at all and are
turned into streams directly.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Iterable, List, Optional
from urllib import parse

import httpx
from pydantic import ValidationError

from sigflow.cipher.engine import CipherEngine
from sigflow.configs import settings
from sigflow.exceptions import DescramblerError, MissingSignature
from sigflow.schemas import RawFormat, Stream, StreamingData, Video, VideoInfo
from sigflow.utils.hls_utils import parse_hls_variants
from sigflow.utils.http_utils import DownloadError, download_text_with_retry

logger = logging.getLogger(__name__)


def append_query_param(url: str, name: str, value: str) -> str:
    separator = "&" if parse.urlsplit(url).query else ("" if url.endswith("?") else "?")
    return f"{url}{separator}{parse.urlencode({name: value})}"


def apply_descrambler_adaptive_fmts(streaming_data: StreamingData, adaptive_fmts_raw: str) -> int:
    """
    Parses a legacy comma-joined list of format query strings into ``streaming_data.formats``.

    This layout has not been verified against live samples, so it is best effort:
    a fragment that does not parse is logged and skipped.

    Returns:
        int: The number of formats added.
    """
    added = 0
    for raw_fmt in adaptive_fmts_raw.split(","):
        if not raw_fmt.strip():
            continue
        logger.warning(f"Parsing legacy compact format list, results may be incomplete: {raw_fmt[:200]}")
        try:
            raw_format = RawFormat.model_validate(dict(parse.parse_qsl(raw_fmt.strip())))
        except ValidationError as e:
            logger.warning(f"Skipping unparsable legacy format fragment: {e.error_count()} error(s)")
            continue
        streaming_data.formats.append(raw_format)
        added += 1
    return added


def descramble_format(raw_format: RawFormat, engine: Optional[CipherEngine]) -> RawFormat:
    """
    Returns ``raw_format`` with a signed delivery URL.

    Raises:
        MissingSignature: If the format has neither a signed URL nor a raw signature,
            or needs a signature while no cipher is available.
    """
    cipher = raw_format.signature_cipher
    if cipher is None:
        raise MissingSignature(f"Format {raw_format.itag} has neither a url nor a signature cipher")
    if cipher.is_signed:
        return raw_format
    if cipher.s is None:
        raise MissingSignature(f"Format {raw_format.itag} contains no signature (s), nor does its url")
    if engine is None:
        raise MissingSignature(f"Format {raw_format.itag} needs a signature but no cipher is available")

    signature = engine.decrypt(cipher.s)
    signed = cipher.model_copy(update={"url": append_query_param(cipher.url, cipher.sp, signature), "s": None})
    return raw_format.model_copy(update={"signature_cipher": signed})


def _descramble_or_drop(engine: Optional[CipherEngine], raw_format: RawFormat) -> Optional[RawFormat]:
    try:
        return descramble_format(raw_format, engine)
    except MissingSignature as e:
        logger.warning(f"Dropping format: {e}")
        return None


def apply_signature(
    formats: Iterable[RawFormat], engine: Optional[CipherEngine], executor: Optional[ThreadPoolExecutor] = None
) -> List[RawFormat]:
    """Descramble every format, dropping the ones that lack a signature."""
    worker = partial(_descramble_or_drop, engine)
    if executor is not None:
        results = list(executor.map(worker, formats))
    else:
        with ThreadPoolExecutor(max_workers=settings.descramble_workers) as pool:
            results = list(pool.map(worker, formats))
    return [raw_format for raw_format in results if raw_format is not None]


class VideoDescrambler:
    """Descrambles the data fetched by ``VideoFetcher`` into a ``Video``."""

    def __init__(
        self,
        video_info: VideoInfo,
        engine: Optional[CipherEngine] = None,
        player_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.video_info = video_info
        self.engine = engine
        self.player_id = player_id
        self.client = client

    @property
    def video_details(self):
        return self.video_info.player_response.video_details

    async def descramble(self) -> Video:
        streaming_data = self.video_info.player_response.streaming_data
        if streaming_data is None:
            raise DescramblerError("VideoInfo contained no StreamingData, which is essential for downloading.")

        if self.video_details.is_live_content:
            format_streams, hls_streams = [], await self.hls_descramble(streaming_data)
        else:
            format_streams, hls_streams = await asyncio.gather(
                asyncio.to_thread(self.format_descramble, streaming_data),
                self.hls_descramble(streaming_data),
            )

        return Video(
            video_id=self.video_details.video_id,
            title=self.video_details.title,
            is_live=self.video_details.is_live_content,
            streams=format_streams + hls_streams,
        )

    def format_descramble(self, streaming_data: StreamingData) -> List[Stream]:
        if self.video_info.adaptive_fmts_raw:
            apply_descrambler_adaptive_fmts(streaming_data, self.video_info.adaptive_fmts_raw)

        formats = apply_signature(streaming_data.formats + streaming_data.adaptive_formats, self.engine)
        return [Stream.from_raw_format(raw_format) for raw_format in formats]

    async def hls_descramble(self, streaming_data: StreamingData) -> List[Stream]:
        if not streaming_data.hls_manifest_url:
            return []
        try:
            manifest = await download_text_with_retry(
                streaming_data.hls_manifest_url,
                headers={"accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"},
                client=self.client,
            )
        except DownloadError as e:
            logger.warning(f"Could not fetch HLS manifest for {self.video_details.video_id}: {e}")
            return []
        return parse_hls_variants(manifest, base_url=streaming_data.hls_manifest_url)
