"""URL shortener that serves pre-rendered pages to crawlers and redirects other visitors."""

__version__ = "0.1.0"