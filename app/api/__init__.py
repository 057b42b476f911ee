"""Image gateway API adapter package.

Architectural role:
- Defines the external HTTP boundary (FastAPI app, auth dependency, schemas).
- Performs transport-level parsing, authentication and quota gating.
- Delegates generation to the core orchestrator.

Scope:
- Request lifecycle control for adapter concerns only.
- No provider, polling or storage logic is implemented in this package.
"""
