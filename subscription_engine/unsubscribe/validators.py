"""
Unsubscribe target safety validation.

Checks candidate URLs and mailto addresses before the resolver offers them:
- HTTPS requirement (mailto exempt, callers may relax it per target)
- Script schemes and executable downloads
- URL shorteners hiding the real destination
- Account-destroying parameters
- URL structure
"""

import urllib.parse
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..detection.signals import parse_mailto

SUSPICIOUS_PATTERNS: Sequence[str] = (
    'javascript:', 'data:', 'vbscript:',
    '.exe', '.zip', '.dmg', '.msi', '.apk',
    'delete-account', 'remove-account', 'cancel-account', 'close-account',
)

URL_SHORTENERS: Sequence[str] = (
    'bit.ly', 'tinyurl.com', 't.co', 'goo.gl', 'ow.ly',
    's.id', 'j.mp', 'buff.ly', 'dlvr.it', 'rebrand.ly',
)

SUSPICIOUS_PARAMS: Sequence[str] = ('cmd', 'command', 'exec', 'delete_account', 'destroy')


@dataclass(frozen=True)
class ValidationResult:
    is_safe: bool
    target: str
    warnings: List[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        if self.is_safe:
            return "Target is safe to use"
        return "; ".join(self.warnings)


class UnsubscribeSafetyValidator:
    """Validate unsubscribe targets for safety."""

    def __init__(self, require_https: bool = True):
        self.require_https = require_https
        self.suspicious_patterns = SUSPICIOUS_PATTERNS
        self.url_shorteners = URL_SHORTENERS
        self.suspicious_params = SUSPICIOUS_PARAMS

    def validate(self, target: str, require_https: Optional[bool] = None) -> ValidationResult:
        """Validate an http(s) URL or a mailto: URI.

        `require_https` overrides the validator-wide setting for this target.
        """
        if require_https is None:
            require_https = self.require_https
        if not target or not target.strip():
            return ValidationResult(False, target or '', ['Empty target'])

        target = target.strip()
        if target.lower().startswith('mailto:'):
            if parse_mailto(target) is None:
                return ValidationResult(False, target, ['Malformed mailto target'])
            return ValidationResult(True, target)

        warnings = []
        if not self.is_well_formed_url(target):
            return ValidationResult(False, target, ['Malformed or incomplete URL'])

        if require_https and not target.lower().startswith('https://'):
            warnings.append('Insecure connection - HTTP instead of HTTPS')

        url_lower = target.lower()
        for pattern in self.suspicious_patterns:
            if pattern in url_lower:
                warnings.append(f'Suspicious pattern detected: {pattern}')

        domain = urllib.parse.urlparse(target).netloc.lower().rpartition('@')[2].split(':')[0]
        if domain in self.url_shorteners or any(domain.endswith('.' + s) for s in self.url_shorteners):
            warnings.append('URL shortener detected - potential security risk')

        if self._has_suspicious_parameters(target):
            warnings.append('Suspicious parameters detected')

        return ValidationResult(not warnings, target, warnings)

    def is_safe(self, target: str) -> bool:
        return self.validate(target).is_safe

    def _has_suspicious_parameters(self, url: str) -> bool:
        try:
            query_params = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
        except ValueError:
            return True
        for param_name in query_params:
            if param_name.lower() in self.suspicious_params:
                return True
        return False

    @staticmethod
    def is_well_formed_url(url: str) -> bool:
        try:
            parsed = urllib.parse.urlparse(url)
        except ValueError:
            return False
        if parsed.scheme.lower() not in ('http', 'https'):
            return False
        return bool(parsed.netloc and '.' in parsed.netloc)
