"""Per-user integrations with external providers.

Provides the integrations table and repository (credentials, connection
status), the Fireflies GraphQL client used to pull transcripts, and the
Google Drive client used to file memos.
"""
