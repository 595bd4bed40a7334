"""Chart of accounts service.

The hierarchy is validated through an index-based AccountTree rather than
trusting parent_code values: every insert and re-parent is checked for
missing parents and cycles before anything is written.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeping_engine.errors import (
    AccountCycleError,
    AccountInUseError,
    AccountNotFoundError,
    ValidationError,
)
from bookkeeping_engine.models import Account, AccountNature
from bookkeeping_engine.services.chart_templates import SWISS_SME_CHART, SYSTEM_ACCOUNT_CODES
from bookkeeping_engine.services.ledger_service import account_has_entries

logger = logging.getLogger(__name__)


class _AccountLike(Protocol):
    code: str
    parent_code: str | None


class AccountTree:
    """Account hierarchy stored as parallel arrays indexed by position."""

    def __init__(self) -> None:
        self._codes: list[str] = []
        self._parents: list[int | None] = []
        self._children: list[list[int]] = []
        self._index: dict[str, int] = {}

    @classmethod
    def from_accounts(cls, accounts: Iterable[_AccountLike]) -> AccountTree:
        """Build a tree, raising on unknown parents or cycles."""
        tree = cls()
        pending: list[tuple[int, str | None]] = []
        for account in accounts:
            if account.code in tree._index:
                raise ValidationError(f"Duplicate account code {account.code}")
            idx = len(tree._codes)
            tree._index[account.code] = idx
            tree._codes.append(account.code)
            tree._parents.append(None)
            tree._children.append([])
            pending.append((idx, account.parent_code))

        for idx, parent_code in pending:
            if parent_code is None:
                continue
            parent_idx = tree._index.get(parent_code)
            if parent_idx is None:
                raise ValidationError(
                    f"Account {tree._codes[idx]} references unknown parent {parent_code}"
                )
            tree._parents[idx] = parent_idx
            tree._children[parent_idx].append(idx)

        tree._check_acyclic()
        return tree

    def _check_acyclic(self) -> None:
        # 0 = unvisited, 1 = on current path, 2 = known to reach a root
        state = [0] * len(self._codes)
        for start in range(len(self._codes)):
            path: list[int] = []
            node: int | None = start
            while node is not None and state[node] == 0:
                state[node] = 1
                path.append(node)
                node = self._parents[node]
            if node is not None and state[node] == 1:
                parent = self._parents[node]
                raise AccountCycleError(
                    self._codes[node], self._codes[parent] if parent is not None else ""
                )
            for visited in path:
                state[visited] = 2

    def __contains__(self, code: object) -> bool:
        return code in self._index

    def __len__(self) -> int:
        return len(self._codes)

    def parent(self, code: str) -> str | None:
        parent_idx = self._parents[self._index[code]]
        return None if parent_idx is None else self._codes[parent_idx]

    def ancestors(self, code: str) -> list[str]:
        """Ancestors from the direct parent up to the root."""
        result: list[str] = []
        node = self._parents[self._index[code]]
        while node is not None:
            result.append(self._codes[node])
            node = self._parents[node]
        return result

    def descendants(self, code: str) -> list[str]:
        """All descendants, breadth-first."""
        result: list[str] = []
        queue = list(self._children[self._index[code]])
        while queue:
            node = queue.pop(0)
            result.append(self._codes[node])
            queue.extend(self._children[node])
        return result

    def level(self, code: str) -> int:
        return len(self.ancestors(code)) + 1

    def would_create_cycle(self, code: str, new_parent: str) -> bool:
        """Whether making new_parent the parent of code closes a loop."""
        if code == new_parent:
            return True
        return code in self.ancestors(new_parent)


class ChartOfAccountsService:
    """Tenant-scoped account registry."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_accounts(self, company_id: UUID, active_only: bool = False) -> list[Account]:
        query = select(Account).where(Account.company_id == company_id)
        if active_only:
            query = query.where(Account.is_active.is_(True))
        result = await self.session.execute(query.order_by(Account.code))
        return list(result.scalars().all())

    async def get_account(self, company_id: UUID, code: str) -> Account:
        result = await self.session.execute(
            select(Account).where(Account.company_id == company_id, Account.code == code)
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(company_id, code)
        return account

    async def load_tree(self, company_id: UUID) -> AccountTree:
        return AccountTree.from_accounts(await self.list_accounts(company_id))

    async def create_account(
        self,
        company_id: UUID,
        code: str,
        name: str,
        nature: str,
        parent_code: str | None = None,
        is_system: bool = False,
    ) -> Account:
        """Create an account under an existing parent."""
        code = code.strip()
        if not code:
            raise ValidationError("Account code is required")
        try:
            nature = AccountNature(nature).value
        except ValueError as exc:
            raise ValidationError(f"Unknown account nature {nature!r}") from exc

        tree = await self.load_tree(company_id)
        if code in tree:
            raise ValidationError(f"Account {code} already exists")

        level = 1
        if parent_code is not None:
            if parent_code not in tree:
                raise AccountNotFoundError(company_id, parent_code)
            level = tree.level(parent_code) + 1

        account = Account(
            company_id=company_id,
            code=code,
            name=name,
            nature=nature,
            parent_code=parent_code,
            level=level,
            is_active=True,
            is_system=is_system,
        )
        self.session.add(account)
        await self.session.flush()
        logger.info("Created account %s for company %s", code, company_id)
        return account

    async def update_account(
        self,
        company_id: UUID,
        code: str,
        *,
        name: str | None = None,
        nature: str | None = None,
        parent_code: str | None = None,
        clear_parent: bool = False,
    ) -> Account:
        """Rename, reclassify or re-parent an account.

        Nature is immutable once ledger lines reference the account.
        """
        account = await self.get_account(company_id, code)

        if nature is not None and nature != account.nature:
            try:
                nature = AccountNature(nature).value
            except ValueError as exc:
                raise ValidationError(f"Unknown account nature {nature!r}") from exc
            if await account_has_entries(self.session, company_id, code):
                raise AccountInUseError(code, "change nature")
            account.nature = nature

        if name is not None:
            account.name = name

        if clear_parent or (parent_code is not None and parent_code != account.parent_code):
            await self._reparent(company_id, account, None if clear_parent else parent_code)

        await self.session.flush()
        return account

    async def _reparent(self, company_id: UUID, account: Account, new_parent: str | None) -> None:
        accounts = await self.list_accounts(company_id)
        tree = AccountTree.from_accounts(accounts)
        if new_parent is not None:
            if new_parent not in tree:
                raise AccountNotFoundError(company_id, new_parent)
            if tree.would_create_cycle(account.code, new_parent):
                raise AccountCycleError(account.code, new_parent)

        account.parent_code = new_parent
        # Rebuild with the new parent and refresh levels of the moved subtree
        tree = AccountTree.from_accounts(accounts)
        by_code = {a.code: a for a in accounts}
        for moved in [account.code, *tree.descendants(account.code)]:
            by_code[moved].level = tree.level(moved)

    async def deactivate_account(self, company_id: UUID, code: str) -> Account:
        """Soft-disable an account. System accounts stay active."""
        account = await self.get_account(company_id, code)
        if account.is_system:
            raise ValidationError(f"System account {code} cannot be deactivated")
        account.is_active = False
        await self.session.flush()
        logger.info("Deactivated account %s for company %s", code, company_id)
        return account

    async def reactivate_account(self, company_id: UUID, code: str) -> Account:
        account = await self.get_account(company_id, code)
        account.is_active = True
        await self.session.flush()
        return account

    async def delete_account(self, company_id: UUID, code: str) -> None:
        """Hard-delete an unused leaf account."""
        account = await self.get_account(company_id, code)
        if await account_has_entries(self.session, company_id, code):
            raise AccountInUseError(code, "delete")
        tree = await self.load_tree(company_id)
        if tree.descendants(code):
            raise ValidationError(f"Account {code} has child accounts")
        await self.session.execute(delete(Account).where(Account.id == account.id))
        logger.info("Deleted account %s for company %s", code, company_id)

    async def install_template(
        self,
        company_id: UUID,
        template: list[tuple[str, str, str, str | None]] | None = None,
    ) -> list[Account]:
        """Seed the Swiss SME chart; codes already present are left untouched."""
        template = template if template is not None else SWISS_SME_CHART
        existing = {a.code for a in await self.list_accounts(company_id)}
        created: list[Account] = []
        for code, name, nature, parent_code in template:
            if code in existing:
                continue
            created.append(
                await self.create_account(
                    company_id,
                    code,
                    name,
                    nature,
                    parent_code=parent_code,
                    is_system=code in SYSTEM_ACCOUNT_CODES,
                )
            )
            existing.add(code)
        logger.info(
            "Installed chart template for company %s (%d accounts created)",
            company_id,
            len(created),
        )
        return created
