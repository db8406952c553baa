"""
Feature modules: cms, page_builder, market, news_import.

Each module owns its models, services and blueprints, and reuses the platform
primitives (auth, rbac, audit, activity log, rate limiting, DB session).
"""
