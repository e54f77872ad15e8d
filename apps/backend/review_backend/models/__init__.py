"""Pydantic models shared by routers, services and stores."""
