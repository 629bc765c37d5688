import logging
import re
from typing import List, Dict, Any, Optional
from urllib.parse import urljoin

from sigflow.schemas import Stream

logger = logging.getLogger(__name__)

ITAG_PATTERN = re.compile(r"/itag/(\d+)/")

# Minimum height for each quality label, highest first.
QUALITY_THRESHOLDS = [
    (2160, "hd2160"),
    (1440, "hd1440"),
    (1080, "hd1080"),
    (720, "hd720"),
    (480, "large"),
    (360, "medium"),
    (240, "small"),
]

DEFAULT_QUALITY = "hd720"


def quality_label(height: int) -> str:
    """Map a declared height to a coarse quality label (e.g. 1081 -> 'hd1080')."""
    for min_height, label in QUALITY_THRESHOLDS:
        if height >= min_height:
            return label
    return "tiny"


def parse_hls_playlist(playlist_content: str, base_url: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Parses an HLS master playlist to extract stream information.

    Args:
        playlist_content (str): The content of the M3U8 master playlist.
        base_url (str, optional): The base URL of the playlist for resolving relative stream URLs. Defaults to None.

    Returns:
        List[Dict[str, Any]]: A list of dictionaries, each representing a stream variant. A ``RESOLUTION``
        attribute is kept as its raw string; it is split into width and height by ``parse_hls_variants``.
    """
    streams = []
    lines = [line.strip() for line in playlist_content.strip().splitlines()]

    # Regex to capture attributes from #EXT-X-STREAM-INF
    stream_inf_pattern = re.compile(r"#EXT-X-STREAM-INF:(.*)")

    for i, line in enumerate(lines):
        if line.startswith("#EXT-X-STREAM-INF"):
            stream_info = {"raw_stream_inf": line}
            match = stream_inf_pattern.match(line)
            if not match:
                logger.warning(f"Could not parse #EXT-X-STREAM-INF line: {line}")
                continue
            attributes_str = match.group(1)

            # Parse attributes like BANDWIDTH, RESOLUTION, etc.
            attributes = re.findall(r'([A-Z-]+)=("([^"]*)"|([^,]+))', attributes_str)
            for key, _, quoted_val, unquoted_val in attributes:
                value = quoted_val if quoted_val else unquoted_val
                stream_info[key.lower().replace("-", "_")] = value

            # The next line should be the stream URL
            if i + 1 < len(lines) and lines[i + 1] and not lines[i + 1].startswith("#"):
                stream_url = lines[i + 1]
                stream_info["url"] = urljoin(base_url, stream_url) if base_url else stream_url
                streams.append(stream_info)

    return streams


def variant_to_stream(variant: Dict[str, Any]) -> Stream:
    """
    Build a resolved stream from one parsed variant.

    Raises:
        ValueError: If the item-tag, resolution, bandwidth or frame rate cannot be parsed.
    """
    itag_match = ITAG_PATTERN.search(variant["url"])
    if not itag_match:
        raise ValueError(f"No itag in variant URI {variant['url']}")

    width = height = None
    quality = DEFAULT_QUALITY
    if "resolution" in variant:
        width, height = map(int, variant["resolution"].lower().split("x"))
        quality = quality_label(height)

    codecs = variant.get("codecs")
    return Stream(
        itag=int(itag_match.group(1)),
        url=variant["url"],
        quality=quality,
        mime_type=f'video/mp4; codecs="{codecs}"' if codecs else "video/mp4",
        width=width,
        height=height,
        bitrate=int(variant["bandwidth"]) if "bandwidth" in variant else None,
        fps=float(variant["frame_rate"]) if "frame_rate" in variant else None,
        is_hls=True,
    )


def parse_hls_variants(playlist_content: str, base_url: Optional[str] = None) -> List[Stream]:
    """Resolve every usable variant of a master playlist; broken variants are dropped one by one."""
    streams = []
    for variant in parse_hls_playlist(playlist_content, base_url):
        try:
            streams.append(variant_to_stream(variant))
        except ValueError as e:
            logger.warning(f"Dropping HLS variant {variant.get('url')}: {e}")
    return streams
