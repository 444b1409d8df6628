"""
Chart-of-Accounts Provisioner

Creates the general-ledger accounts each finance/operations module needs.
"""

from typing import Any

from package_deployer.models import EntityType
from package_deployer.services.provisioning.base import BaseProvisioner, ResourceSpec


def _account(code: str, name: str, account_type: str) -> ResourceSpec:
    return ResourceSpec(code=code, name=name, attributes={"account_type": account_type})


class ChartOfAccountsProvisioner(BaseProvisioner):
    """Provision GL accounts per module."""

    entity_type = EntityType.CHART_OF_ACCOUNT
    kind = "account"

    TABLE = {
        "SYS-GL-CORE": [
            _account("1001000", "Cash - Operating Account", "ASSET"),
            _account("2001000", "Accounts Payable", "LIABILITY"),
            _account("3001000", "Owner's Equity", "EQUITY"),
            _account("4001000", "Revenue - General", "REVENUE"),
        ],
        "SYS-AR-MGMT": [
            _account("1002000", "Accounts Receivable", "ASSET"),
            _account("1002100", "Allowance for Doubtful Accounts", "ASSET"),
        ],
        "SYS-INVENTORY": [
            _account("1003000", "Inventory - Raw Materials", "ASSET"),
            _account("1003100", "Inventory - Work in Process", "ASSET"),
            _account("1003200", "Inventory - Finished Goods", "ASSET"),
            _account("5001000", "Cost of Goods Sold", "COST_OF_SALES"),
        ],
        "SYS-PROCURE": [
            _account("2002000", "Accounts Payable - Trade", "LIABILITY"),
            _account("6001000", "Procurement Expenses", "DIRECT_EXPENSE"),
        ],
        "SYS-HR-CORE": [
            _account("6002000", "Salaries and Wages", "DIRECT_EXPENSE"),
            _account("2003000", "Accrued Payroll", "LIABILITY"),
            _account("6003000", "Employee Benefits", "DIRECT_EXPENSE"),
        ],
    }

    def build_attributes(self, spec: ResourceSpec, module_code: str) -> dict[str, Any]:
        return {
            "account_type": spec.attributes["account_type"],
            "created_by_module": module_code,
            "current_balance": 0,
        }

    def describe(self, spec: ResourceSpec) -> dict[str, Any]:
        return {"accountType": spec.attributes["account_type"]}
