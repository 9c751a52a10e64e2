"""Transcript ingestion: descriptor validation, job creation, and dispatch.

Every entry point (authenticated ingest API, provider webhooks) funnels
into IngestionGateway.ingest(), which persists a pending job and hands it
to the JobDispatcher. Webhook payload parsing lives in webhooks.py.
"""
