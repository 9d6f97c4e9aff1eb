"""
Chronos backend package.

FastAPI service for calendar events, todos and notifications, with free-slot
suggestions and a periodic reminder sweep. The ASGI app lives in `src.chronos.main`.
"""
