"""fitplan: stepwise, resumable fitness plan generation."""

__version__ = "0.1.0"
