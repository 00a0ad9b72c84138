"""Account hierarchy builder."""

from decimal import Decimal
from uuid import uuid4

from ledger_kernel.domain.account_tree import build_account_tree, tree_depth
from ledger_kernel.domain.dtos import AccountInfo
from ledger_kernel.domain.types import AccountType, NormalBalance


def _account(code, parent=None, allows_posting=True):
    return AccountInfo(
        id=uuid4(),
        code=code,
        name=f"Account {code}",
        account_type=AccountType.ASSET,
        normal_balance=NormalBalance.DEBIT,
        allows_posting=allows_posting,
        parent_id=parent.id if parent else None,
    )


class TestBuildAccountTree:

    def setup_method(self):
        self.header = _account("10", allows_posting=False)
        self.cash = _account("100", parent=self.header)
        self.petty = _account("101", parent=self.header)
        self.bank = _account("13")
        self.accounts = [self.petty, self.bank, self.cash, self.header]

    def test_roots_and_children_sorted_by_code(self):
        roots = build_account_tree(self.accounts)

        assert [node.account.code for node in roots] == ["10", "13"]
        assert [child.account.code for child in roots[0].children] == ["100", "101"]
        assert roots[0].children[0].depth == 1
        assert not roots[1].has_children

    def test_header_reports_sum_of_children(self):
        balances = {
            self.cash.id: Decimal("150"),
            self.petty.id: Decimal("50"),
            self.header.id: Decimal("999"),
        }
        roots = build_account_tree(self.accounts, balances)
        assert roots[0].balance == Decimal("200")

    def test_missing_balance_is_zero(self):
        roots = build_account_tree(self.accounts)
        assert roots[1].balance == Decimal("0")

    def test_subtree(self):
        (root,) = build_account_tree(self.accounts, root_id=self.header.id)
        assert [node.account.code for node in root.walk()] == ["10", "100", "101"]

    def test_unknown_root(self):
        assert build_account_tree(self.accounts, root_id=uuid4()) == []

    def test_max_depth_stops_expansion(self):
        level2 = _account("1001", parent=self.cash)
        roots = build_account_tree(self.accounts + [level2], max_depth=1)
        assert tree_depth(roots) == 1
        assert tree_depth(build_account_tree(self.accounts + [level2])) == 2

    def test_orphan_becomes_root(self):
        orphan = AccountInfo(
            id=uuid4(),
            code="900",
            name="Orphan",
            account_type=AccountType.ASSET,
            normal_balance=NormalBalance.DEBIT,
            parent_id=uuid4(),
        )
        roots = build_account_tree([orphan])
        assert roots[0].account is orphan

    def test_empty_forest_depth(self):
        assert tree_depth([]) == 0
