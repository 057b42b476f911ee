"""Image generation adapter package.

Scope:
    Provider catalog, model resolution, the upstream HTTP client, the
    submit/poll job driver, and artifact materialization (re-hosting, signed
    URLs, Base64 encoding with scoped temporary files).

Non-goals:
    - No quota accounting or authentication (see `app.core` / `app.api`).
    - No request-level orchestration (see `app.core.engine`).
"""
