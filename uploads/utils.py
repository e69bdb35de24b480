# uploads/utils.py
"""
Helpers shared by the upload receiver and the processing pipeline.
"""
import hashlib
import os
from typing import Optional

KNOWN_EXTENSIONS = ('webm', 'mp4', 'm4a', 'mp3', 'wav', 'ogg', 'mpeg', 'mpga', 'flac')

CONTENT_TYPES = {
    'webm': 'audio/webm',
    'mp4': 'audio/mp4',
    'm4a': 'audio/mp4',
    'mp3': 'audio/mpeg',
    'mpeg': 'audio/mpeg',
    'mpga': 'audio/mpeg',
    'wav': 'audio/wav',
    'ogg': 'audio/ogg',
    'flac': 'audio/flac',
}


def extension_for(content_type: Optional[str], name: Optional[str] = None) -> str:
    """
    File extension for a recording, from its content type first, then its name.
    """
    ct = (content_type or '').lower()
    if 'webm' in ct:
        return 'webm'
    if 'mp4' in ct or 'm4a' in ct:
        return 'mp4'
    if 'wav' in ct:
        return 'wav'
    if 'ogg' in ct:
        return 'ogg'
    if 'mpeg' in ct or 'mp3' in ct:
        return 'mp3'

    if name:
        ext = os.path.splitext(name.split('?', 1)[0])[1].lstrip('.').lower()
        if ext in KNOWN_EXTENSIONS:
            return ext
    return 'mp3'


def content_type_for(extension: str) -> str:
    return CONTENT_TYPES.get(extension, 'application/octet-stream')


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
