"""verity: pattern-match compiler, type checker and property verifier."""

__version__ = "0.1.0"
