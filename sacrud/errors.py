# Engine exceptions
#
# Every exception carries an HTTP-like status_code so an outer (HTTP) layer can
# map it without knowing the engine internals. Storage library exceptions never
# leave the engine unwrapped.
#
import traceback
from http import HTTPStatus
from sqlalchemy.exc import DontWrapMixin
import sacrud
from .config import is_debug


class EngineError(Exception, DontWrapMixin):
    """
    Base class of the errors raised by the engine
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    message = ""

    def __init__(self, message="", status_code=None):
        Exception.__init__(self, message)
        if status_code is not None:
            self.status_code = status_code
        self.message = self.message + str(message)

    def __str__(self):
        return self.message


class NotFoundError(EngineError):
    """
    This exception is raised when a query matched no rows
    """

    status_code = HTTPStatus.NOT_FOUND.value

    def __init__(self, message="", status_code=None):
        super().__init__(message, status_code)
        sacrud.log.error("Not found: %s", message)


class ValidationError(EngineError):
    """
    This exception is raised when a storage-level constraint or a column validation rule is violated
    :param errors: list of {"field", "message", "args"} dicts
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    message = "Validation Error: "

    def __init__(self, message="", status_code=None, errors=None):
        self.errors = list(errors or [])
        if not message and self.errors:
            message = validation_message(self.errors)
        super().__init__(message, status_code)
        sacrud.log.warning("ValidationError: %s", message)


class ConfigurationError(EngineError):
    """
    This exception is raised when the association graph does not match an include specification,
    it should abort registration rather than be handled per request
    """

    message = "Configuration Error: "

    def __init__(self, message="", status_code=None):
        super().__init__(message, status_code)
        sacrud.log.error("ConfigurationError: %s", message)


class StorageError(EngineError):
    """
    This exception wraps any other storage error
    """

    message = "Storage Error: "

    def __init__(self, message="", status_code=None):
        super().__init__(message, status_code)
        sacrud.log.error("Storage Error: %s", message)
        if is_debug():
            sacrud.log.debug(traceback.format_exc(120))


def validation_message(errors):
    """
    :param errors: list of {"field", "message", "args"} dicts
    :return: human readable message
    """
    return ". ".join(error["message"] for error in errors)
