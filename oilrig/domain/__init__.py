"""Domain layer (pure logic).

- Keep economy rules and calculations here.
- Avoid I/O: no DB sessions, no HTTP/FastAPI.
- Deterministic functions: time (`now`) and randomness (`rng`) are passed in.
"""
