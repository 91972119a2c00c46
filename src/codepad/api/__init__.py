from .routes import get_session, router

__all__ = ["get_session", "router"]
