"""
Account Hierarchy

Declares which ledger accounts exist, which reporting group each one rolls
up into, and the opening balance each one starts from.

DESIGN DECISION: Composite balances (e.g. "Bank") come only from this
declaration. Nothing in the system looks at an account's name to decide
what it belongs to.

File format (JSON):

    {
        "accounts": {
            "Cash": {},
            "NMB Main A/C": {"group": "Bank", "opening_balance": "340071"},
            "Selcom": {"group": "Bank", "opening_balance": "4295.75"},
            "Mobile": {"group": "Mobile"},
            "Airtel Money": {"group": "Mobile"}
        }
    }
"""

import json
from decimal import Decimal
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AccountConfigurationError(ValueError):
    """The declared account hierarchy is inconsistent."""
    pass


class AccountConfig(BaseModel):
    """One declared ledger account."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    group: Optional[str] = Field(
        default=None,
        min_length=1,
        description="Reporting group this account rolls up into"
    )
    opening_balance: Decimal = Field(
        default=Decimal("0"),
        description="Balance before the first recorded transaction"
    )


class AccountHierarchy(BaseModel):
    """
    Explicit account -> group mapping with opening balances.

    A group may share its name with a ledger account only when that ledger
    account is itself a member of the group. Otherwise the two balances
    would be indistinguishable in a report.
    """
    model_config = ConfigDict(extra="forbid")

    accounts: dict[str, AccountConfig] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_group_names(self) -> 'AccountHierarchy':
        for group in self.groups:
            if group in self.accounts and self.accounts[group].group != group:
                raise AccountConfigurationError(
                    f"Group '{group}' has the same name as a ledger account "
                    f"that is not one of its members"
                )
        return self

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'AccountHierarchy':
        """Load a hierarchy from a JSON file."""
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        return cls.model_validate(data)

    @classmethod
    def from_mapping(
        cls,
        groups: Optional[dict[str, list[str]]] = None,
        opening_balances: Optional[dict[str, Decimal]] = None,
        accounts: Optional[list[str]] = None,
    ) -> 'AccountHierarchy':
        """
        Build a hierarchy from plain mappings.

        Args:
            groups: group name -> member ledger accounts
            opening_balances: ledger account -> opening balance
            accounts: extra ungrouped ledger accounts
        """
        declared: dict[str, dict] = {}
        for name in accounts or []:
            declared.setdefault(name, {})
        for group, members in (groups or {}).items():
            for member in members:
                existing = declared.setdefault(member, {})
                if existing.get("group") not in (None, group):
                    raise AccountConfigurationError(
                        f"Account '{member}' is declared in more than one group"
                    )
                existing["group"] = group
        for name, balance in (opening_balances or {}).items():
            declared.setdefault(name, {})["opening_balance"] = balance
        return cls.model_validate({"accounts": declared})

    @property
    def account_names(self) -> list[str]:
        return list(self.accounts)

    @property
    def groups(self) -> dict[str, list[str]]:
        """Group name -> member ledger accounts, in declaration order."""
        result: dict[str, list[str]] = {}
        for name, config in self.accounts.items():
            if config.group:
                result.setdefault(config.group, []).append(name)
        return result

    def is_known(self, account: str) -> bool:
        return account in self.accounts

    def group_of(self, account: str) -> Optional[str]:
        config = self.accounts.get(account)
        return config.group if config else None

    def group_members(self, group: str) -> list[str]:
        return self.groups.get(group, [])

    def opening_balance(self, account: str) -> Decimal:
        config = self.accounts.get(account)
        return config.opening_balance if config else Decimal("0")

    def opening_balances(self) -> dict[str, Decimal]:
        return {name: config.opening_balance for name, config in self.accounts.items()}

    def expand(self, names: list[str]) -> set[str]:
        """Resolve a mix of ledger account and group names to ledger accounts."""
        resolved: set[str] = set()
        groups = self.groups
        for name in names:
            if name in groups:
                resolved.update(groups[name])
            else:
                resolved.add(name)
        return resolved
