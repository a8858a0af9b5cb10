from .agent import RetrievalCoordinator

__all__ = ["RetrievalCoordinator"]
