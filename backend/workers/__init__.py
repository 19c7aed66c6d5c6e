# Workers: separate processes that share state through the signal store.
# Run from backend/ with:
#   python -m workers.resolver_worker
