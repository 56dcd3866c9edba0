"""Request middleware for a small in-process web app: logging, JWT, hCaptcha, load shedding, monitoring."""

__version__ = "0.1.0"