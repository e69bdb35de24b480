"""
Upload errors.
"""


class UploadSessionError(Exception):
    code = 'UPLOAD_FAILED'


class IncompleteUploadError(UploadSessionError):
    code = 'UPLOAD_INCOMPLETE'

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Missing parts: {', '.join(str(i) for i in self.missing)}")


class HashMismatchError(UploadSessionError):
    code = 'HASH_MISMATCH'

    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Audio hash mismatch: client sent {expected}, server computed {actual}")
