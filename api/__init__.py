"""api/ -- FastAPI application, request/response models and REST routers.

Layer rule: api/ sits on top. It may import from every other package; nothing
imports from api/ except asgi.py and the tests.
"""
