import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query

from sigflow.descrambler.fetcher import VideoFetcher
from sigflow.exceptions import DescramblerError, ExtractionFailure, ScanFailure, UnsupportedPlayer
from sigflow.schemas import DescramblerURLParams, Video
from sigflow.utils.http_utils import DownloadError

descrambler_router = APIRouter()
logger = logging.getLogger(__name__)


@descrambler_router.get("/video", response_model=Video)
async def descramble_video(params: Annotated[DescramblerURLParams, Query()]):
    """Resolve playable stream URLs for a video."""
    try:
        fetcher = VideoFetcher.from_url(params.destination)
        descrambler = await fetcher.fetch()
        return await descrambler.descramble()
    except DownloadError as e:
        logger.error(f"Descrambling failed: {str(e)}")
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except ScanFailure as e:
        logger.error(f"Descrambling failed: {str(e)}")
        raise HTTPException(status_code=404, detail=str(e))
    except (UnsupportedPlayer, ExtractionFailure) as e:
        logger.error(f"Descrambling failed: {str(e)}")
        raise HTTPException(status_code=422, detail=str(e))
    except DescramblerError as e:
        logger.error(f"Descrambling failed: {str(e)}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Descrambling failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Descrambling failed: {str(e)}")
