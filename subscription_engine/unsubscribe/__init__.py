"""
Unsubscribe method variants, target validation and resolution.
"""

from .methods import (
    FilterMethod, HeaderMethod, LinkMethod, MailtoMethod, MethodKind, UnknownMethod,
    UnsubscribeMethod, method_from_dict, method_to_dict,
)
from .resolver import UnsubscribeResolver
from .validators import UnsubscribeSafetyValidator, ValidationResult

__all__ = [
    'FilterMethod', 'HeaderMethod', 'LinkMethod', 'MailtoMethod', 'MethodKind', 'UnknownMethod',
    'UnsubscribeMethod', 'method_from_dict', 'method_to_dict',
    'UnsubscribeResolver',
    'UnsubscribeSafetyValidator', 'ValidationResult',
]
