import logging
import time
from dataclasses import dataclass
from typing import Mapping, Optional

import requests

from nightscout import FetchConfig, NightscoutError, fetch_latest_reading
from speech import SpeechConfig, build_speech

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, I could not get your glucose reading right now. Please try again later."


@dataclass(frozen=True)
class SpeechResult:
    speech: str
    ok: bool


def handle_glucose_query(
    environ: Optional[Mapping[str, str]] = None,
    session: Optional[requests.Session] = None,
    now_ms: Optional[float] = None,
) -> SpeechResult:
    """Fetch the latest reading and phrase it, or apologise.

    Failure details are logged but never spoken.
    """
    fetch_config = FetchConfig.from_env(environ)
    speech_config = SpeechConfig.from_env(environ)

    try:
        reading = fetch_latest_reading(fetch_config, session=session)
    except NightscoutError as exc:
        logger.error("Nightscout fetch error (%s): %s", type(exc).__name__, exc)
        return SpeechResult(speech=APOLOGY, ok=False)

    logger.info("Nightscout entry: %s", reading)

    if now_ms is None:
        now_ms = time.time() * 1000
    speech = build_speech(
        reading,
        speech_config.unit_system,
        now_ms,
        stale_after_minutes=speech_config.stale_after_minutes,
    )
    return SpeechResult(speech=speech, ok=True)
