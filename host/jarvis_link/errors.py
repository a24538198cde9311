# jarvis_link/errors.py
"""
Error taxonomy for the session orchestrator
"""

from typing import Optional, Type


class JarvisError(Exception):
    """Base class for every orchestrator failure"""


class ConfigurationError(JarvisError):
    """A credential or required setting is missing"""


class DeviceError(JarvisError):
    """Microphone or audio output device is unavailable"""


class LinkError(JarvisError):
    """The remote model stream failed or closed unexpectedly"""


class RecognitionError(JarvisError):
    """Base class for local speech recognition failures"""

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or code)
        self.code = code


class RecognitionTransientError(RecognitionError):
    """Benign engine noise ('aborted', 'no-speech'); ignored"""


class RecognitionNetworkError(RecognitionError):
    """Engine lost its backend; retried after a fixed delay"""


class RecognitionOtherError(RecognitionError):
    """Any other engine failure; recovered only through the 'ended' path"""


TRANSIENT_RECOGNITION_CODES = frozenset({"aborted", "no-speech"})


def classify_recognition_error(code: str) -> Type[RecognitionError]:
    """Map an engine error code onto the recognition error taxonomy"""
    if code in TRANSIENT_RECOGNITION_CODES:
        return RecognitionTransientError
    if code == "network":
        return RecognitionNetworkError
    return RecognitionOtherError
