"""PaperScope: LLM-assisted structured summaries of research-paper PDFs."""

__version__ = "0.1.0"
