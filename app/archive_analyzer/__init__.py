"""
Archive Analyzer Backend Application.

A FastAPI service that turns stored documents (PDF, Word, images) into
structured, cached analyses using a vision-capable LLM.
"""

__version__ = "1.0.0"
