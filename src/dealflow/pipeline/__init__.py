"""Transcript processing pipeline.

One runner (TranscriptPipeline) executes the fixed stage sequence for a
job regardless of what triggered it: fetch, classify, resolve company,
generate content, save the memo, extract contacts and commitments,
materialize tasks and reminders, and file the memo to Drive.

Generative stages use instructor + LiteLLM and degrade to empty results
on failure; only fetching and the memo save can fail a job.
"""
