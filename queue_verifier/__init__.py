"""Queue Worker Verification client.

Dispatches a synthetic probe job onto the application's work queue,
polls the job-status endpoint with adaptive backoff until the external
worker reports a terminal state, classifies failures into actionable
categories, and coordinates the competing refresh / verification
triggers raised by the setup dashboard.
"""

__version__ = "0.1.0"
