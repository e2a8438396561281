"""Pipeline services used by handlers.

Services are imported lazily by handlers so a cold start does not build AWS
clients a route never uses.
"""
