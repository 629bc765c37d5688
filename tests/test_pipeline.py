import pytest

from sigflow.cipher.engine import CipherEngine
from sigflow.descrambler.pipeline import (
    VideoDescrambler,
    append_query_param,
    apply_descrambler_adaptive_fmts,
    apply_signature,
    descramble_format,
)
from sigflow.exceptions import DescramblerError, MissingSignature
from sigflow.schemas import RawFormat, StreamingData, VideoInfo, url_already_contains_signature

from conftest import HLS_URL, SIGNATURE


class ExplodingEngine:
    def decrypt(self, signature):
        raise AssertionError("decrypt must not be called for signed urls")


@pytest.fixture
def engine(player_js):
    return CipherEngine.from_js(player_js)


@pytest.mark.parametrize(
    "url, signed",
    [
        ("https://rr1.example.com/videoplayback?id=1&sig=abc", True),
        ("https://rr1.example.com/videoplayback?id=1&lsig=abc", True),
        ("https://rr1.example.com/videoplayback?id=1&signature=abc", True),
        ("https://rr1.example.com/videoplayback?id=1&sparams=x", False),
        ("https://rr1.example.com/videoplayback?sig=abc&id=1", True),
        ("https://rr1.example.com/videoplayback?lsig=abc&id=1", True),
        ("https://rr1.example.com/signature/videoplayback?id=1", False),
        ("https://rr1.example.com/videoplayback?id=1&title=signature", False),
    ],
)
def test_url_already_contains_signature(url, signed):
    assert url_already_contains_signature(url) is signed


def test_append_query_param():
    assert append_query_param("https://a.example/v?id=1", "sig", "a/b") == "https://a.example/v?id=1&sig=a%2Fb"
    assert append_query_param("https://a.example/v", "sig", "x") == "https://a.example/v?sig=x"


def test_presigned_url_passes_through_untouched():
    url = "https://rr1.example.com/videoplayback?id=1&ip=1.2.3.4&sig=ALREADY%3D%3D"
    raw_format = RawFormat.model_validate({"itag": 18, "url": url})

    result = descramble_format(raw_format, ExplodingEngine())

    assert result is raw_format
    assert result.signature_cipher.url == url


def test_ciphered_url_gets_decrypted_signature(engine, scramble):
    raw_format = RawFormat.model_validate(
        {"itag": 137, "signatureCipher": f"s={scramble(SIGNATURE)}&sp=sig&url=https%3A%2F%2Fcdn.example%2Fv%3Fid%3D2"}
    )
    result = descramble_format(raw_format, engine)
    assert result.signature_cipher.url == f"https://cdn.example/v?id=2&sig={SIGNATURE}"
    assert result.signature_cipher.s is None
    assert raw_format.signature_cipher.s is not None


def test_signature_parameter_name_follows_sp(engine, scramble):
    raw_format = RawFormat.model_validate(
        {"itag": 251, "url": "https://cdn.example/v?id=9", "s": scramble(SIGNATURE), "sp": "signature"}
    )
    assert descramble_format(raw_format, engine).signature_cipher.url == f"https://cdn.example/v?id=9&signature={SIGNATURE}"


def test_missing_signature_raises():
    raw_format = RawFormat.model_validate({"itag": 140, "signatureCipher": "sp=sig&url=https%3A%2F%2Fcdn.example%2Fv"})
    with pytest.raises(MissingSignature):
        descramble_format(raw_format, ExplodingEngine())


def test_ciphered_format_without_engine_raises(scramble):
    raw_format = RawFormat.model_validate({"itag": 137, "url": "https://cdn.example/v", "s": scramble(SIGNATURE)})
    with pytest.raises(MissingSignature, match="no cipher"):
        descramble_format(raw_format, None)


def test_apply_signature_drops_only_unsigned_records(player_response, engine):
    data = StreamingData.model_validate(player_response["streamingData"])

    formats = apply_signature(data.formats + data.adaptive_formats, engine)

    assert [f.itag for f in formats] == [18, 137]
    assert formats[0].signature_cipher.url == "https://rr1.example.com/videoplayback?id=1&sig=PRESIGNED"
    assert formats[1].signature_cipher.url == f"https://rr1.example.com/videoplayback?id=2&sig={SIGNATURE}"


def test_legacy_compact_formats_are_split(scramble):
    data = StreamingData()
    raw = ",".join(
        [
            "itag=22&url=https%3A%2F%2Fcdn.example%2Fv%3Fid%3D1%26sig%3Dok&type=video%2Fmp4&quality=hd720",
            "not a format",
            f"itag=43&url=https%3A%2F%2Fcdn.example%2Fv%3Fid%3D2&s={scramble(SIGNATURE)}&sp=sig",
            "",
        ]
    )

    added = apply_descrambler_adaptive_fmts(data, raw)

    assert added == 2
    assert [f.itag for f in data.formats] == [22, 43]
    assert data.formats[0].mime_type == "video/mp4"
    assert data.formats[0].signature_cipher.is_signed
    assert data.formats[1].signature_cipher.s == scramble(SIGNATURE)


def test_legacy_garbage_does_not_fail():
    data = StreamingData()
    assert apply_descrambler_adaptive_fmts(data, "%%%,=,&&") == 0
    assert data.formats == []


@pytest.mark.asyncio
async def test_descramble_combines_formats_and_hls(player_response, engine, hls_manifest, fake_downloads):
    pages, requested = fake_downloads
    pages[HLS_URL] = hls_manifest
    video_info = VideoInfo(player_response=player_response)

    video = await VideoDescrambler(video_info, engine=engine).descramble()

    assert video.video_id == "dQw4w9WgXcQ"
    assert video.title == "Sample video"
    assert [(s.itag, s.is_hls) for s in video.streams] == [(18, False), (137, False), (95, True), (96, True)]
    assert requested == [HLS_URL]


@pytest.mark.asyncio
async def test_manifest_failure_keeps_formats(player_response, engine, fake_downloads):
    video = await VideoDescrambler(VideoInfo(player_response=player_response), engine=engine).descramble()
    assert [s.itag for s in video.streams] == [18, 137]


@pytest.mark.asyncio
async def test_live_video_only_yields_hls(player_response, hls_manifest, fake_downloads):
    pages, _ = fake_downloads
    pages[HLS_URL] = hls_manifest
    player_response["videoDetails"]["isLiveContent"] = True

    video = await VideoDescrambler(VideoInfo(player_response=player_response), engine=ExplodingEngine()).descramble()

    assert video.is_live
    assert all(s.is_hls for s in video.streams)
    assert len(video.streams) == 2


@pytest.mark.asyncio
async def test_missing_streaming_data_is_an_error(player_response):
    del player_response["streamingData"]
    with pytest.raises(DescramblerError):
        await VideoDescrambler(VideoInfo(player_response=player_response)).descramble()


@pytest.mark.asyncio
async def test_legacy_formats_join_the_pipeline(player_response, engine, fake_downloads):
    del player_response["streamingData"]["hlsManifestUrl"]
    video_info = VideoInfo(
        player_response=player_response,
        adaptive_fmts_raw="itag=22&url=https%3A%2F%2Fcdn.example%2Fv%3Fid%3D7%26sig%3Dok,broken",
    )

    video = await VideoDescrambler(video_info, engine=engine).descramble()

    assert [s.itag for s in video.streams] == [18, 22, 137]


def test_presigned_url_with_leading_sig_parameter_passes_through():
    raw_format = RawFormat.model_validate({"itag": 18, "url": "https://rr1.example.com/videoplayback?sig=PRESIGNED&id=1"})
    assert descramble_format(raw_format, ExplodingEngine()) is raw_format


def test_record_without_url_is_dropped_alone(player_response, engine):
    player_response["streamingData"]["adaptiveFormats"].append({"itag": 999, "mimeType": "video/mp4"})
    player_response["streamingData"]["adaptiveFormats"].append({"mimeType": "video/mp4", "url": "https://cdn.example/v"})
    data = StreamingData.model_validate(player_response["streamingData"])

    assert [f.itag for f in data.adaptive_formats] == [137, 140, 999]
    assert data.adaptive_formats[2].signature_cipher is None
    with pytest.raises(MissingSignature, match="neither a url"):
        descramble_format(data.adaptive_formats[2], engine)
    assert [f.itag for f in apply_signature(data.formats + data.adaptive_formats, engine)] == [18, 137]
