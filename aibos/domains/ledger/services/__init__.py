from aibos.domains.ledger.services.account_service import (
    create_account,
    deactivate_account,
    get_account,
    list_accounts,
    search_accounts,
    seed_default_chart,
)
from aibos.domains.ledger.services.posting_service import (
    approve_journal,
    create_journal,
    get_journal,
    list_journals,
    post_journal,
    reverse_journal,
    validate_journal,
)

__all__ = [
    "approve_journal",
    "create_account",
    "create_journal",
    "deactivate_account",
    "get_account",
    "get_journal",
    "list_accounts",
    "list_journals",
    "post_journal",
    "reverse_journal",
    "search_accounts",
    "seed_default_chart",
    "validate_journal",
]
