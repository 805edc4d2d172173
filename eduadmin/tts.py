"""Text-to-speech client for the hosted speech synthesis API."""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional

import requests

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 5000
DEFAULT_VOICE = 'banmai_north'

# voice id -> (label, API value)
VOICE_OPTIONS: Dict[str, Dict[str, str]] = {
    'banmai_north': {'label': 'Ban Mai (female, north)', 'api_value': 'banmai'},
    'leminh_south': {'label': 'Le Minh (female, south)', 'api_value': 'leminh'},
    'thuminh_north': {'label': 'Thu Minh (female, north)', 'api_value': 'thuminh'},
    'myan_central': {'label': 'My An (female, central)', 'api_value': 'myan'},
    'giahuy_central': {'label': 'Gia Huy (male, central)', 'api_value': 'giahuy'},
    'ngoclam_central': {'label': 'Ngoc Lam (female, central)', 'api_value': 'ngoclam'},
    'minhquang_south': {'label': 'Minh Quang (male, south)', 'api_value': 'minhquang'},
    'linhsan_south': {'label': 'Linh San (female, south)', 'api_value': 'linhsan'},
}


@dataclass
class SynthesisResult:
    audio: Optional[bytes] = None
    audio_url: str = ''
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.audio is not None


def validate_text(text: Optional[str]) -> Optional[str]:
    """Return an error message for unusable input, or None."""
    if not text or not text.strip():
        return 'Please enter the text to convert'
    if len(text) > MAX_TEXT_LENGTH:
        return f'Text exceeds the {MAX_TEXT_LENGTH} character limit'
    return None


def get_voice_code(voice: str) -> str:
    option = VOICE_OPTIONS.get(voice) or VOICE_OPTIONS[DEFAULT_VOICE]
    return option['api_value']


def clamp_speed(speed) -> int:
    """API accepts integer speeds from -3 to 3; 0 is normal."""
    try:
        val = float(speed)
    except (TypeError, ValueError):
        return 0
    if math.isnan(val):
        return 0
    if val > 3:
        return 3
    if val < -3:
        return -3
    return int(math.floor(val + 0.5))


class TTSClient:
    """
    Two-step synthesis: POST the text, then download the audio from the
    URL the API returns. Failures come back in ``SynthesisResult.error``.
    """

    def __init__(self, api_url: str, api_key: str, timeout_seconds: float = 15.0,
                 session: Optional[requests.Session] = None):
        self._api_url = api_url
        self._api_key = api_key
        self._timeout = float(timeout_seconds)
        self._session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def close(self) -> None:
        self._session.close()

    def synthesize(self, text: str, voice: str = DEFAULT_VOICE, speed=0) -> SynthesisResult:
        invalid = validate_text(text)
        if invalid:
            return SynthesisResult(error=invalid)
        if not self.enabled:
            return SynthesisResult(error='Text-to-speech is not configured')

        headers = {
            'api-key': self._api_key,
            'voice': get_voice_code(voice),
            'speed': str(clamp_speed(speed)),
            'Content-Type': 'text/plain; charset=utf-8',
        }
        try:
            response = self._session.post(
                self._api_url, data=text.encode('utf-8'), headers=headers, timeout=self._timeout
            )
            if not response.ok:
                try:
                    body = response.json()
                except ValueError:
                    body = None
                message = body.get('message') if isinstance(body, dict) else None
                return SynthesisResult(error=message or f'API returned error {response.status_code}')

            payload = response.json()
            if not isinstance(payload, dict):
                logger.warning("TTS returned unexpected payload: %r", payload)
                return SynthesisResult(error='Speech service returned an invalid response')
            audio_url = payload.get('async')
            if payload.get('error') != 0 or not audio_url:
                return SynthesisResult(error=payload.get('message') or 'API did not return an audio URL')

            audio_response = self._session.get(audio_url, timeout=self._timeout)
            if not audio_response.ok:
                return SynthesisResult(audio_url=audio_url, error='Could not download the audio file')

            return SynthesisResult(audio=audio_response.content, audio_url=audio_url)
        except requests.RequestException as e:
            logger.warning("TTS request failed: %s", e)
            return SynthesisResult(error=str(e) or 'Could not connect to the speech service')
        except ValueError as e:
            logger.warning("TTS returned invalid JSON: %s", e)
            return SynthesisResult(error='Speech service returned an invalid response')
