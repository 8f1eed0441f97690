from . import comments, ping, quotes, suppliers, tickets

__all__ = ["comments", "ping", "quotes", "suppliers", "tickets"]
