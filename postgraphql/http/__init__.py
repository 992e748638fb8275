"""
HTTP request handling: the FastAPI app that serves the generated schema.
"""
