"""
Hostname canonicalization for incoming tracking domains.

The detector hands over bare hostnames. Before a hostname is used as a
cache key or sent upstream it is lowercased, stripped of a trailing dot,
IDNA-encoded when it contains non-ASCII characters, and checked against
RFC 1035 label rules. Anything that looks like a URL is rejected.
"""

import re
from dataclasses import dataclass
from typing import Optional

import idna

from geo_resolver.enums import HostnameErrorCode
from geo_resolver.exceptions import ValidationError


# Control characters, whitespace, and URL/punctuation symbols never appear
# in a bare hostname
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~_]'
)

LABEL_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")

MAX_HOSTNAME_LENGTH = 253


@dataclass
class HostnameValidationError:
    """Structured error information for hostname validation failures."""

    code: HostnameErrorCode
    message: str
    details: dict


@dataclass
class HostnameValidationResult:
    """Result of hostname validation."""

    valid: bool
    canonical_domain: Optional[str]
    error: Optional[HostnameValidationError]


class DomainValidator:
    """Validates and canonicalizes bare hostnames."""

    def validate(self, raw_domain: str) -> HostnameValidationResult:
        """
        Validate and normalize a hostname.

        Args:
            raw_domain: The hostname as observed by the detector

        Returns:
            HostnameValidationResult with the canonical form or an error
        """
        if not raw_domain or not raw_domain.strip():
            return self._invalid(
                HostnameErrorCode.EMPTY_INPUT,
                "Hostname input is empty",
                {"raw_input": raw_domain},
            )

        domain = raw_domain.strip()

        if FORBIDDEN_CHARS_PATTERN.search(domain):
            return self._invalid(
                HostnameErrorCode.FORBIDDEN_CHARS,
                "Hostname contains forbidden characters",
                {
                    "raw_input": raw_domain,
                    "forbidden_chars": FORBIDDEN_CHARS_PATTERN.findall(domain),
                },
            )

        try:
            canonical = self.normalize_to_canonical(domain)
        except ValidationError as e:
            return self._invalid(HostnameErrorCode.IDNA_ERROR, e.message, e.details)

        bad_labels = [label for label in canonical.split(".") if not LABEL_PATTERN.match(label)]
        if bad_labels or len(canonical) > MAX_HOSTNAME_LENGTH:
            return self._invalid(
                HostnameErrorCode.INVALID_LABEL,
                "Hostname is not a valid DNS name",
                {"raw_input": raw_domain, "canonical": canonical, "bad_labels": bad_labels},
            )

        return HostnameValidationResult(valid=True, canonical_domain=canonical, error=None)

    def normalize_to_canonical(self, domain: str) -> str:
        """
        Convert a hostname to canonical form (lowercase, IDNA-encoded).

        Raises:
            ValidationError: If IDNA encoding fails
        """
        domain_lower = domain.lower().rstrip(".")

        if any(ord(c) > 127 for c in domain_lower):
            try:
                return idna.encode(domain_lower, uts46=True).decode("ascii")
            except idna.IDNAError as e:
                raise ValidationError(
                    code=HostnameErrorCode.IDNA_ERROR.value,
                    message=f"IDNA encoding failed: {e}",
                    details={"domain": domain, "idna_error": str(e)},
                )

        return domain_lower

    @staticmethod
    def _invalid(code: HostnameErrorCode, message: str, details: dict) -> HostnameValidationResult:
        return HostnameValidationResult(
            valid=False,
            canonical_domain=None,
            error=HostnameValidationError(code=code, message=message, details=details),
        )
