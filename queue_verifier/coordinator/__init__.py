"""Coordination of competing dashboard triggers.

- lock: debounce + single-flight ``OperationLock``
- verification: ``VerificationCoordinator`` (dispatch, polling, cache, rendering)
"""
