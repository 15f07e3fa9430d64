"""Progress store: per-user unit of work over memory or PostgreSQL"""
