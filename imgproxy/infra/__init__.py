# imgproxy/infra/__init__.py
"""Infrastructure: logging, metrics, rate limiting, upstream HTTP client."""
