"""
Security rules for the query pipeline.
Validates natural-language input and enforces the read-only gate on generated queries.
"""

import re
import logging
from typing import Iterable, Optional, Tuple

import sqlparse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Any tag alone on the fence line, or a known tag followed by the query on the same line
_FENCE_OPEN = re.compile(
    r"^\s*```(?:[\w+.-]*[ \t]*\r?\n|(?:sql|plsql|mysql|postgresql|json|javascript|js|mongodb|text)\b)?\s*",
    re.IGNORECASE
)
_FENCE_CLOSE = re.compile(r"\s*```\s*$")


class SecurityConfig(BaseModel):
    """Security configuration model."""
    max_query_length: int = 10000
    max_document_limit: int = 1000


class SecurityValidator:
    """Validates user input and generated queries."""

    def __init__(self, config: Optional[SecurityConfig] = None):
        self.config = config or SecurityConfig()

    def validate_query(self, query: str) -> Tuple[bool, Optional[str]]:
        """
        Validate a natural-language request before it reaches the generator.

        Args:
            query: User input query string

        Returns:
            Tuple of (is_valid, error_message)
        """
        if query is None or not query.strip():
            return False, "Query cannot be empty"

        if len(query) > self.config.max_query_length:
            return False, f"Query exceeds maximum length of {self.config.max_query_length} characters"

        return True, None

    def sanitize_input(self, user_input: str) -> str:
        """
        Sanitize user input by removing null bytes and collapsing whitespace.

        Args:
            user_input: Raw user input

        Returns:
            Sanitized input string
        """
        sanitized = user_input.replace('\x00', '')
        sanitized = ' '.join(sanitized.split())
        return sanitized[:self.config.max_query_length]

    def clean_generated_text(self, text: str) -> str:
        """Strip code fences, surrounding whitespace and trailing semicolons."""
        cleaned = (text or "").strip()
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
        cleaned = cleaned.strip()
        while cleaned.endswith(";"):
            cleaned = cleaned[:-1].rstrip()
        return cleaned

    def validate_generated(
        self,
        text: str,
        read_only_keywords: Iterable[str],
        single_statement: bool = True
    ) -> Tuple[bool, Optional[str]]:
        """
        Apply the read-only gate to a cleaned generated query.

        Args:
            text: Cleaned query text
            read_only_keywords: Keywords a read-only query may start with
            single_statement: Reject texts sqlparse splits into several statements

        Returns:
            Tuple of (is_valid, reason)
        """
        if not text:
            return False, "empty output"

        keywords = [k for k in read_only_keywords if k]
        pattern = r"^(?:%s)\b" % "|".join(re.escape(k) for k in keywords)
        if not keywords or not re.match(pattern, text, re.IGNORECASE):
            logger.warning(f"Rejected non-read-only query: {text[:80]}")
            return False, "non-read-only output"

        if single_statement:
            statements = [s for s in sqlparse.split(text) if s.strip().strip(";").strip()]
            if len(statements) > 1:
                logger.warning(f"Rejected multi-statement query ({len(statements)} statements)")
                return False, "multiple statements"

        return True, None
