"""
Cache API routers.
"""
