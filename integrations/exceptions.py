"""
Errors raised by the OpenAI-compatible provider integration.
"""


class GPTClientError(Exception):
    """The provider call itself failed (network, auth, rate limit, 5xx)."""

    code = 'UPSTREAM_UNAVAILABLE'


class UpstreamResponseError(GPTClientError):
    """The provider answered, but the payload is not what we asked for."""

    code = 'UPSTREAM_BAD_RESPONSE'

    def __init__(self, message, payload=None, errors=None):
        super().__init__(message)
        self.payload = payload
        self.errors = errors or {}
