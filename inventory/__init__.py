"""inventory/ -- Users, computers, licenses and meetings persisted with SQLAlchemy Core.

Layer rule: inventory/ imports only stdlib + third-party libraries.
"""
