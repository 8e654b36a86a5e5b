"""Chat front-end helpers (OpenAI function tools over the dispatcher)."""
