"""Research Refinery: iterative AI research with fact-checking."""

__version__ = "0.1.0"
