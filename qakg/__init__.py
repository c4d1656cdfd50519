"""Knowledge-graph extraction from annotated question/answer records."""

__version__ = "0.1.0"
