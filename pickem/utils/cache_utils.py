"""
Cache helpers for the standings and breakdown endpoints
"""

import functools

from flask import current_app, request

from pickem import cache


def make_cache_key(*args, **kwargs):
    """Generate a cache key from request path and arguments"""
    args_str = "_".join(str(arg) for arg in args)
    kwargs_str = "_".join(f"{k}_{v}" for k, v in sorted(kwargs.items()))
    return f"{request.path}_{args_str}_{kwargs_str}".replace("/", "_")


def league_cache_key(league_id):
    return f"standings_league_{league_id}"


def cached_route(timeout=300, key_func=None):
    """
    Cache a view's return value.

    key_func receives the view kwargs and returns the key; it lets writers
    invalidate one league's entry without clearing the whole cache.
    """

    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            cache_key = key_func(**kwargs) if key_func else f"view_{make_cache_key(*args, **kwargs)}"

            result = cache.get(cache_key)
            if result is not None:
                current_app.logger.debug(f"Cache hit for key: {cache_key}")
                return result

            result = f(*args, **kwargs)
            cache.set(cache_key, result, timeout=timeout)
            current_app.logger.debug(f"Cache set for key: {cache_key}")
            return result

        return wrapped

    return decorator


def invalidate_league_cache(*league_ids):
    """Drop cached standings for the given leagues after settlement or a pick write"""
    keys = [league_cache_key(league_id) for league_id in league_ids]
    if keys:
        cache.delete_many(*keys)
        current_app.logger.debug(f"Cache invalidated: {', '.join(keys)}")


def get_cache_stats():
    return {
        "type": current_app.config.get("CACHE_TYPE", "Unknown"),
        "timeout": current_app.config.get("CACHE_DEFAULT_TIMEOUT", 300),
    }
