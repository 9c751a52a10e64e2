"""CRM records derived from meetings -- memos, companies, contacts, tasks, reminders.

Provides SQLAlchemy models, Pydantic schemas, CRMRepository for async CRUD,
ContactMatcher for precedence-based contact matching, and the stale
relationship reminder scanner.
"""
