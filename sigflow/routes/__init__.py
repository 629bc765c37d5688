from .descrambler import descrambler_router

__all__ = ["descrambler_router"]
