"""
routers/ — FastAPI route modules.

Each file contains a thin APIRouter. All business logic
lives in services/ and capture/. Routers validate input, call them,
and return responses.
"""
