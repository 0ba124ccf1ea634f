"""
HTML to PDF Service package.

This module provides a FastAPI application exposing a multipart `/pdf`
endpoint that renders an uploaded index.html into PDF with wkhtmltopdf.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
