"""Error taxonomy for the call assistant.

Tool and model failures are recovered inside the turn; only a spoken
fallback message ever reaches the telephony provider.
"""


class CallAssistantError(Exception):
    """Base class for call assistant errors."""


class DuplicateToolError(CallAssistantError):
    """A tool with the same name is already registered."""


class ToolValidationError(CallAssistantError):
    """Tool arguments did not match the declared schema."""


class ToolInvocationError(CallAssistantError):
    """A tool's backend call failed."""


class ModelInvocationError(CallAssistantError):
    """The language model call failed or returned nothing usable."""


class CrmError(CallAssistantError):
    """Transport or HTTP status failure talking to the CRM."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
