from .parameter_extractor import ExtractedParameters, ParameterExtractor
from .parameter_validator import ParameterValidator, ValidationErrorCode, ValidationResult

__all__ = [
    'ExtractedParameters',
    'ParameterExtractor',
    'ParameterValidator',
    'ValidationErrorCode',
    'ValidationResult',
]
