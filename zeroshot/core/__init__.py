"""Core session primitives (grid helpers, actions and the pure reducer).

No Redis or FastAPI imports here.
"""
