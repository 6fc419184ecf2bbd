# imgproxy/transport/__init__.py
"""HTTP surface: FastAPI app, middleware, proxy routes, stream relay."""
