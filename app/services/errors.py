# app/services/errors.py
from typing import Optional


class ExtractionError(Exception):
    """Base for every failure the extraction boundary turns into a result."""


class TransportError(ExtractionError):
    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class ModelAPIError(ExtractionError):
    pass


class ParseError(ExtractionError):
    pass


class ValidationError(ExtractionError):
    pass
