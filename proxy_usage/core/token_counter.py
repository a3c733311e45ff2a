"""
Token counting and usage tracking.

Holds token counts reported by the proxy for cost estimation.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Counts come from the proxy's usage report; the request log never
    carries them.
    """
    input_tokens: int
    output_tokens: int
    cached_tokens: int = 0

    def __post_init__(self):
        """Validate token counts are non-negative."""
        if self.input_tokens < 0 or self.output_tokens < 0 or self.cached_tokens < 0:
            raise ValueError("token counts cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total billable tokens (input + output)."""
        return self.input_tokens + self.output_tokens
