"""Domain models for queue worker verification.

- job: ``JobStatus`` and the immutable ``ProbeJob``
- cache: ``CachedStatus`` and its expiration rule
- view: ``VerificationView`` rendered for the presentation layer
- payloads: pydantic schemas for the ``/verify/*`` JSON documents
"""
