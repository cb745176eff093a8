"""Service-layer errors. Routes translate these into HTTP responses."""

from typing import Optional


class IntegrationNotConfiguredError(Exception):
    """Raised when a shop has no active config row for an integration"""

    def __init__(self, tipo: str, detail: Optional[str] = None):
        self.tipo = tipo
        super().__init__(detail or f"Integration '{tipo}' is not configured")


class SyncInProgressError(Exception):
    """Raised when another calendar sync holds the shop's lease"""

    pass


class SlotUnavailableError(Exception):
    """Raised when a booking overlaps an existing appointment of the barber"""

    pass


class WhatsAppAPIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[int] = None):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class AIProviderError(Exception):
    """Raised when the LLM provider call fails or the provider is unsupported"""

    pass


class AIResponseFormatError(Exception):
    """Raised when a structured model reply is not valid JSON or does not match its schema"""

    pass


class N8NError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ConversationNotFoundError(LookupError):
    pass
