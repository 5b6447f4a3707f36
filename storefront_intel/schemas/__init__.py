"""
schemas/ — Pydantic request/response models for the intelligence API

Input validation and OpenAPI docs for the intelligence and capture
endpoints. Business logic never depends on these models directly: routers
convert them to plain dicts/dataclasses before calling services.
"""
