"""macdiet action engine: gated, audited execution of storage remediation actions."""

__version__ = "0.3.0"
