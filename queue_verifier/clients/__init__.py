"""HTTP clients for the ``/verify/*`` endpoints.

- base: shared ``httpx`` client, CSRF header and error translation
- verification: dispatch and status polling
- status_cache: cached verification snapshot
"""
