"""
Persistence: ORM models, record stores and the change feed
"""
