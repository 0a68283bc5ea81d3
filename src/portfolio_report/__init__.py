"""Investment report generation with bounded-concurrency LLM orchestration."""

__version__ = "0.1.0"
