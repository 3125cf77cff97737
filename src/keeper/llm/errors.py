"""Errors raised by provider adapters."""


class ProviderHttpError(Exception):
    """The LLM API answered with a non-2xx status.

    The body is kept verbatim so it can be shown to the user.
    """

    def __init__(self, status_code: int, body: str, provider: str | None = None):
        self.status_code = status_code
        self.body = body
        self.provider = provider
        super().__init__(f"API Error: {status_code} - {body}")
