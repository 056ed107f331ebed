"""
Query generation through the Mistral AI chat API.
Builds a grounding prompt from the backend schema and validates the returned query.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from ..core.errors import GenerationError
from ..core.models import BackendType, GeneratedQuery, SchemaDescriptor
from ..security.document_commands import UnsafeCommandError, parse_document_command
from ..security.security import SecurityValidator
from .dialects import Dialect, DialectRegistry

logger = logging.getLogger(__name__)


class MistralQueryGenerator:
    """
    Converts natural-language requests into read-only queries using Mistral AI.

    One service call per request, no retries. Every returned query passes the
    read-only gate before it leaves this class.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "mistral-large-latest",
        temperature: float = 0.0,
        max_tokens: int = 1000,
        timeout: float = 30.0,
        client: Any = None,
        dialects: Optional[DialectRegistry] = None,
        security_validator: Optional[SecurityValidator] = None
    ):
        """
        Initialize the generator.

        Args:
            api_key: Mistral API key
            model: Model to use (mistral-large-latest, mistral-small-latest, etc.)
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens in response
            timeout: Request timeout in seconds
            client: Pre-built client exposing ``chat.complete``; built from api_key if omitted
            dialects: Dialect registry; defaults to the built-in dialects
            security_validator: Validator applying the read-only gate
        """
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.dialects = dialects or DialectRegistry()
        self.security_validator = security_validator or SecurityValidator()

        if client is None:
            try:
                from mistralai import Mistral
                client = Mistral(api_key=api_key)
                logger.info(f"Initialized Mistral AI with model: {model}")
            except ImportError:
                logger.error("mistralai package not installed. Install with: pip install mistralai")
                raise
        self.client = client

    def generate(
        self,
        natural_query: str,
        backend_type: BackendType,
        schema: Union[SchemaDescriptor, str, None]
    ) -> GeneratedQuery:
        """
        Generate a read-only query for one backend.

        Args:
            natural_query: User's natural language request
            backend_type: Target backend
            schema: Grounding schema for that backend

        Returns:
            GeneratedQuery whose text passed the read-only gate

        Raises:
            GenerationError: on service failure or rejected output
        """
        dialect = self.dialects.get(backend_type)
        messages = self.build_messages(natural_query, dialect, schema)

        try:
            response = self.client.chat.complete(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout_ms=int(self.timeout * 1000)
            )
            raw = _response_text(response)
        except Exception as e:
            logger.error(f"Query generation failed for {backend_type.value}: {e}")
            raise GenerationError(
                "Generation service call failed",
                backend_type=backend_type,
                cause=e,
                reason="service failure"
            ) from e

        query = self.security_validator.clean_generated_text(raw)
        is_valid, reason = self.security_validator.validate_generated(
            query,
            dialect.read_only_keywords,
            single_statement=not dialect.structured_commands
        )
        if not is_valid:
            raise GenerationError(f"Generated query rejected: {reason}", backend_type=backend_type, reason=reason)

        if dialect.structured_commands:
            try:
                parse_document_command(query, max_limit=self.security_validator.config.max_document_limit)
            except UnsafeCommandError as e:
                raise GenerationError(
                    "Generated command rejected",
                    backend_type=backend_type,
                    cause=e,
                    reason="unsafe command"
                ) from e

        logger.info(f"Generated {dialect.name} query: {query}")
        return GeneratedQuery(source_natural_query=natural_query, backend_type=backend_type, text=query)

    def build_messages(
        self,
        natural_query: str,
        dialect: Dialect,
        schema: Union[SchemaDescriptor, str, None]
    ) -> List[Dict[str, str]]:
        """Build the chat messages for one generation call."""
        return [
            {
                "role": "system",
                "content": (
                    f"You are an expert in {dialect.name} databases. "
                    f"Convert natural language requests into {dialect.name} queries. "
                    "Output only the query."
                )
            },
            {
                "role": "user",
                "content": self._build_prompt(natural_query, dialect, schema)
            }
        ]

    def _build_prompt(
        self,
        natural_query: str,
        dialect: Dialect,
        schema: Union[SchemaDescriptor, str, None]
    ) -> str:
        schema_text = schema.rendered_text if isinstance(schema, SchemaDescriptor) else (schema or "")
        if not schema_text.strip():
            schema_text = "(no tables found)"

        prompt = f"""
Convert this natural language request into a {dialect.name} query using the schema below.

Schema:
{schema_text}

Requirements:
"""
        for rule in dialect.output_rules + dialect.hints:
            prompt += f"- {rule}\n"

        prompt += f"""
Natural language request:
"{natural_query}"
"""
        return prompt


def _response_text(response) -> str:
    content = response.choices[0].message.content
    if isinstance(content, str):
        return content
    # Some models return a list of content chunks
    return "".join(getattr(chunk, "text", "") or "" for chunk in content or [])


def create_query_generator(
    generation_settings,
    timeout: float = 30.0,
    security_validator: Optional[SecurityValidator] = None,
    dialects: Optional[DialectRegistry] = None
) -> Optional[MistralQueryGenerator]:
    """
    Factory function to create the query generator.

    Args:
        generation_settings: GenerationSettings with the API key and model
        timeout: Request timeout in seconds
        security_validator: Validator applying the read-only gate
        dialects: Dialect registry

    Returns:
        Generator instance or None if no API key is configured
    """
    if not generation_settings.api_key:
        logger.warning("No Mistral API key provided. Query generation is disabled.")
        return None

    return MistralQueryGenerator(
        api_key=generation_settings.api_key,
        model=generation_settings.model,
        temperature=generation_settings.temperature,
        max_tokens=generation_settings.max_tokens,
        timeout=timeout,
        dialects=dialects,
        security_validator=security_validator
    )
