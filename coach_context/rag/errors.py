"""Error types for the context engine.

None of these cross the assembler boundary. They are raised inside a layer
and converted to that layer's placeholder text.
"""


class ContextEngineError(Exception):
    """Base exception for context engine errors."""

    pass


class ConfigurationError(ContextEngineError):
    """Raised when a provider credential or setting is missing."""

    pass


class EmbeddingError(ContextEngineError):
    """Raised when the embedding provider fails or returns a malformed payload."""

    pass


class SearchUnavailableError(ContextEngineError):
    """Raised when a similarity search entry point cannot serve a request.

    Attributes:
        strategy: Name of the search strategy that failed
    """

    def __init__(self, strategy: str, reason: str) -> None:
        self.strategy = strategy
        super().__init__(f"{strategy} search unavailable: {reason}")
