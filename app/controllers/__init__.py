"""FastAPI routers acting as controllers in the MVC architecture."""

from . import scripts

__all__ = ["scripts"]
