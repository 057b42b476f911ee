"""Core orchestration package.

Architectural role:
    Sits between the HTTP adapter and the image/store subsystems.

Composition:
    - `engine`: generation workflow (resolve -> poll -> materialize -> audit).
    - `generation_types`: request/target/job/artifact contracts and response formatting.
    - `quota`: per-credential daily quota ledger.
    - `errors`: caller-visible error taxonomy.
    - `config`: environment-derived settings.
    - `context`: construction and shutdown of long-lived collaborators.
    - `keep_alive`: background health pinger.

Determinism and side effects:
    Package import itself is side-effect free apart from `config` loading `.env`.
"""
