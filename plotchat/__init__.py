"""Password-gated chat front-end and API for charting uploaded tables with an LLM."""

__version__ = "0.1.0"
