"""
Errors raised by the consultation processing pipeline.
"""


class ConsultationBusyError(Exception):
    """Another run currently holds the processing lease for this consultation."""

    code = 'CONSULTATION_BUSY'


class MissingAudioError(Exception):
    """The consultation has no stored recording to process."""

    code = 'AUDIO_NOT_FOUND'
