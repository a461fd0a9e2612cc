from .messages import make_message

__all__ = ["make_message"]
