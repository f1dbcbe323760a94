"""Tool retrieval orchestration: plan execution, stage skipping and result fusion."""

__version__ = "0.1.0"
