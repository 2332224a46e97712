"""Status polling: backoff policy, per-loop state and metrics, and the engine."""
