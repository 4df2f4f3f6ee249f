class MessengerError(Exception):
    """Base class for errors raised by the messenger"""
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class ConfigurationError(MessengerError):
    """Service is not configured"""
    status_code = 503


class LLMCallError(MessengerError):
    """Call to the language model failed"""
    status_code = 502


class MalformedResponseError(LLMCallError):
    """Language model returned an unusable response"""


class SummaryGenerationError(MessengerError):
    """Failed to generate medical summary"""
    status_code = 502


class AuthenticationError(MessengerError):
    """Not authenticated"""
    status_code = 401


class AuthorizationError(MessengerError):
    """Not authorized"""
    status_code = 403


class NotFoundError(MessengerError):
    """Not found"""
    status_code = 404


class ValidationError(MessengerError):
    """Invalid request"""
    status_code = 400
