from . import completion

__all__ = ["completion"]
