from slowapi import Limiter
from slowapi.util import get_remote_address

from . import config

limiter = Limiter(key_func=get_remote_address)
testing = config.is_testing()


def rate_limit(limit: str):
    if testing:
        def wrapper(func):
            return func
        return wrapper
    return limiter.limit(limit)
