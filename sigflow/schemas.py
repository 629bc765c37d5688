import logging
from typing import Any, List, Optional
from urllib import parse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

SIGNATURE_PARAMS = frozenset({"signature", "sig", "lsig"})


def url_already_contains_signature(url: str) -> bool:
    """Checks whether the delivery url already carries one of the signature query parameters."""
    query = parse.parse_qs(parse.urlsplit(url).query, keep_blank_values=True)
    return not SIGNATURE_PARAMS.isdisjoint(query)


class GenericModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SignatureCipher(GenericModel):
    url: str = Field(..., description="The base delivery URL.")
    s: Optional[str] = Field(None, description="The raw (still scrambled) signature.")
    sp: str = Field("sig", description="The query parameter the decrypted signature is sent as.")

    @property
    def is_signed(self) -> bool:
        return url_already_contains_signature(self.url)


class RawFormat(GenericModel):
    itag: int
    signature_cipher: Optional[SignatureCipher] = None
    mime_type: Optional[str] = Field(None, validation_alias=AliasChoices("mimeType", "mime_type", "type"))
    quality: Optional[str] = None
    quality_label: Optional[str] = Field(None, alias="qualityLabel")
    width: Optional[int] = None
    height: Optional[int] = None
    bitrate: Optional[int] = None
    fps: Optional[int] = None
    content_length: Optional[int] = Field(None, alias="contentLength")
    approx_duration_ms: Optional[int] = Field(None, alias="approxDurationMs")
    audio_quality: Optional[str] = Field(None, alias="audioQuality")

    @model_validator(mode="before")
    @classmethod
    def build_signature_cipher(cls, data: Any) -> Any:
        """Fold ``url``/``signatureCipher``/``cipher`` variants into one ``signature_cipher``."""
        if not isinstance(data, dict) or "signature_cipher" in data:
            return data
        data = dict(data)
        raw_cipher = data.pop("signatureCipher", None) or data.pop("cipher", None)
        if raw_cipher is not None:
            data["signature_cipher"] = dict(parse.parse_qsl(raw_cipher)) if isinstance(raw_cipher, str) else raw_cipher
        elif "url" in data:
            data["signature_cipher"] = {
                "url": data.pop("url"),
                "s": data.pop("s", None),
                "sp": data.pop("sp", None) or "sig",
            }
        return data


class StreamingData(GenericModel):
    formats: List[RawFormat] = Field(default_factory=list)
    adaptive_formats: List[RawFormat] = Field(default_factory=list, alias="adaptiveFormats")
    hls_manifest_url: Optional[str] = Field(None, alias="hlsManifestUrl")

    @field_validator("formats", "adaptive_formats", mode="before")
    @classmethod
    def drop_invalid_formats(cls, value: Any) -> Any:
        """A malformed record is dropped on its own instead of failing the whole response."""
        if not isinstance(value, list):
            return value
        formats = []
        for item in value:
            try:
                formats.append(RawFormat.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Dropping malformed format record: {e.error_count()} error(s)")
        return formats


class VideoDetails(GenericModel):
    video_id: str = Field(..., alias="videoId")
    title: str = ""
    author: Optional[str] = None
    length_seconds: Optional[int] = Field(None, alias="lengthSeconds")
    is_live_content: bool = Field(False, alias="isLiveContent")


class PlayerResponse(GenericModel):
    video_details: VideoDetails = Field(..., alias="videoDetails")
    streaming_data: Optional[StreamingData] = Field(None, alias="streamingData")


class VideoInfo(GenericModel):
    player_response: PlayerResponse
    adaptive_fmts_raw: Optional[str] = Field(None, description="Legacy comma-joined list of format query strings.")


class Stream(GenericModel):
    itag: int
    url: str
    quality: Optional[str] = None
    mime_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    bitrate: Optional[int] = None
    fps: Optional[float] = None
    is_hls: bool = False

    @classmethod
    def from_raw_format(cls, raw_format: RawFormat) -> "Stream":
        return cls(
            itag=raw_format.itag,
            url=raw_format.signature_cipher.url,
            quality=raw_format.quality,
            mime_type=raw_format.mime_type,
            width=raw_format.width,
            height=raw_format.height,
            bitrate=raw_format.bitrate,
            fps=raw_format.fps,
        )


class Video(GenericModel):
    video_id: str
    title: str = ""
    is_live: bool = False
    streams: List[Stream] = Field(default_factory=list)


class DescramblerURLParams(GenericModel):
    destination: str = Field(..., description="The video URL or id to descramble.", alias="d")
