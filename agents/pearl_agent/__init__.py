from .agent import PearlAgent

__all__ = ["PearlAgent"]
