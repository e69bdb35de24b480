"""
Sender side of the chunked upload protocol.
"""

import hashlib
import logging
import uuid
from typing import Callable, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_PART_SIZE = 4 * 1024 * 1024


class UploadError(Exception):
    """Raised when the server rejects a part or the finalize call."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ''):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


def split_into_parts(data: bytes, part_size: int = DEFAULT_PART_SIZE) -> List[bytes]:
    if part_size <= 0:
        raise ValueError("part_size must be positive")
    if not data:
        return [b'']
    return [data[i:i + part_size] for i in range(0, len(data), part_size)]


class ChunkedUploader:
    """
    Sends a recording in sequential parts, then finalizes it.

    Args:
        base_url: API root, e.g. https://api.example.com/api/uploads
        token: JWT access token
        part_size: Bytes per part
        session: Optional requests.Session to reuse
    """

    def __init__(self, base_url: str, token: str, part_size: int = DEFAULT_PART_SIZE,
                 session: Optional[requests.Session] = None, timeout: int = 60):
        self.base_url = base_url.rstrip('/')
        self.part_size = part_size
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {token}',
            'User-Agent': 'PediScribe-Uploader/1.0',
        })

    def _post(self, endpoint: str, **kwargs) -> Dict:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            response = self.session.post(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise UploadError(f"Request to {endpoint} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise UploadError(
                f"HTTP {response.status_code} from {endpoint}: {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()

    def send_parts(self, data: bytes, session_id: str, file_type: str = 'application/octet-stream',
                   on_progress: Optional[Callable[[int, int], None]] = None) -> int:
        parts = split_into_parts(data, self.part_size)
        total = len(parts)
        for index, part in enumerate(parts):
            self._post(
                'chunk/',
                data={'sessionId': session_id, 'chunkIndex': index, 'totalChunks': total},
                files={'chunk': (f'part-{index}', part, file_type)},
            )
            if on_progress:
                on_progress(index + 1, total)
        logger.info(f"Sent {total} parts for session {session_id}")
        return total

    def upload(self, data: bytes, patient_id: str, duration: Optional[float], file_name: str,
               file_type: str, on_progress: Optional[Callable[[int, int], None]] = None,
               consultation_type: Optional[str] = None, original_data: Optional[bytes] = None,
               original_file_type: Optional[str] = None) -> Dict:
        """
        Upload a recording and create the consultation.

        ``original_data`` is the untouched recording kept as a backup when
        ``data`` was compressed on the device.

        Returns:
            The finalize response: consultation_id, audio_url, ...
        """
        session_id = str(uuid.uuid4())
        self.send_parts(data, session_id, file_type, on_progress)

        payload = {
            'sessionId': session_id,
            'patientId': str(patient_id),
            'duration': duration,
            'fileName': file_name,
            'fileType': file_type,
            'hash': hashlib.sha256(data).hexdigest(),
        }
        if consultation_type:
            payload['consultationType'] = consultation_type

        if original_data is not None:
            original_session_id = str(uuid.uuid4())
            self.send_parts(original_data, original_session_id, original_file_type or file_type)
            payload['originalSessionId'] = original_session_id
            payload['originalFileType'] = original_file_type or file_type

        result = self._post('finalize/', json=payload)
        logger.info(f"Upload finalized as consultation {result.get('consultation_id')}")
        return result
