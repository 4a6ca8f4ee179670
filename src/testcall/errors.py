class HarnessError(Exception):
    """Base class for recoverable failures inside a test call."""


class BackendError(HarnessError):
    """A Flynn backend request failed (transport error, non-2xx, bad body)."""


class BackendUnavailableError(BackendError):
    """The backend circuit breaker is open; the request was not sent."""


class CaptureError(HarnessError):
    """The microphone could not be opened or finalized."""


class MicrophoneBusyError(CaptureError):
    """Another recording handle is already live."""


class TranscriptionError(HarnessError):
    pass


class ReplyGenerationError(HarnessError):
    pass


class SynthesisError(HarnessError):
    pass
