"""Services Layer — the balance-mutation engine and its façade.

Invariants:
    - Control flow: BalanceService -> IdempotencyResolver -> ConflictRetryCoordinator
      -> AtomicUpdateExecutor -> store
    - Only AtomicUpdateExecutor writes balance or version

Design Decisions:
    - One file per component; dependencies passed in explicitly (no container)
"""
