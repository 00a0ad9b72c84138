"""
Account tree -- pure hierarchy builder over a flat account list.

The chart of accounts is stored flat with a parent reference.  This module
rebuilds the hierarchy for presentation and roll-ups; the validator never
depends on it.  Header accounts (``allows_posting`` False) with children
report the sum of their children's balances instead of their own.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from ledger_kernel.domain.dtos import ZERO, AccountInfo


@dataclass(frozen=True)
class AccountTreeNode:
    account: AccountInfo
    depth: int
    balance: Decimal
    children: tuple["AccountTreeNode", ...] = ()

    @property
    def has_children(self) -> bool:
        return bool(self.children)

    def walk(self):
        """Depth-first iteration over this node and its descendants."""
        yield self
        for child in self.children:
            yield from child.walk()


def build_account_tree(
    accounts: Iterable[AccountInfo],
    balances: Mapping[UUID, Decimal] | None = None,
    root_id: UUID | None = None,
    max_depth: int = 10,
) -> list[AccountTreeNode]:
    """
    Build the account hierarchy.

    Args:
        accounts: Flat account list.  Accounts whose parent is not in the
            list are treated as roots.
        balances: Own balance per account id (missing means zero).
        root_id: Build only the subtree under this account.
        max_depth: Children below this depth are not expanded.

    Returns:
        Root nodes, children ordered by account code.
    """
    accounts = sorted(accounts, key=lambda a: a.code)
    balances = balances or {}
    by_id = {account.id: account for account in accounts}
    children: dict[UUID | None, list[AccountInfo]] = {}
    for account in accounts:
        parent = account.parent_id if account.parent_id in by_id else None
        children.setdefault(parent, []).append(account)

    def build(account: AccountInfo, depth: int, seen: frozenset[UUID]) -> AccountTreeNode:
        kids = [] if depth >= max_depth else [
            build(child, depth + 1, seen | {account.id})
            for child in children.get(account.id, [])
            if child.id not in seen
        ]
        balance = balances.get(account.id, ZERO)
        if not account.allows_posting and kids:
            balance = sum((kid.balance for kid in kids), ZERO)
        return AccountTreeNode(account=account, depth=depth, balance=balance, children=tuple(kids))

    if root_id is not None:
        roots = [by_id[root_id]] if root_id in by_id else []
    else:
        roots = children.get(None, [])
    return [build(root, 0, frozenset()) for root in roots]


def tree_depth(nodes: Iterable[AccountTreeNode]) -> int:
    """Deepest node depth in the forest, 0 for an empty forest."""
    return max((node.depth for root in nodes for node in root.walk()), default=0)
