"""FastAPI routers acting as controllers in the MVC architecture."""

from . import jobs, speakers, webhooks

__all__ = ["jobs", "speakers", "webhooks"]
