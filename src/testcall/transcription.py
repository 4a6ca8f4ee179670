import logging

from testcall.backend import BackendClient
from testcall.capture import CapturedAudio
from testcall.errors import BackendError, TranscriptionError

logger = logging.getLogger(__name__)


class TranscriptionGateway:
    """Uploads a finalized capture for speech-to-text.

    Results shorter than ``min_chars`` after stripping are reported as ""
    (no speech). The capture file is deleted once it has been read.
    """

    def __init__(self, client: BackendClient, min_chars: int = 2):
        self._client = client
        self.min_chars = min_chars

    async def transcribe(self, capture: CapturedAudio) -> str:
        try:
            audio = capture.path.read_bytes()
        except OSError as e:
            raise TranscriptionError(f"could not read capture: {e}") from e
        finally:
            try:
                capture.path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove capture file %s: %s", capture.path, e)

        if not audio:
            logger.info("Empty capture (%s), treating as no speech", capture.reason)
            return ""

        try:
            text = await self._client.transcribe(audio, filename=capture.path.name)
        except BackendError as e:
            raise TranscriptionError(str(e)) from e

        text = (text or "").strip()
        if len(text) < self.min_chars:
            logger.info("No speech detected in %.1fs capture", capture.duration)
            return ""
        return text
