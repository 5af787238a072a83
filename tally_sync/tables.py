"""
Static catalog of the Tally collections that can be exported.

Each TableKind carries its descriptor (name, description, collection type)
and the request template used to export it.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum

from .errors import UnknownTableError


@dataclass(frozen=True)
class TableDescriptor:
    """A catalog entry. collection_type is both the <TYPE> and the record tag."""
    name: str
    description: str
    collection_type: str
    template: str
    # Vouchers are not narrowed by SVFROMDATE/SVTODATE alone
    needs_date_filter: bool = False


class TableKind(str, Enum):
    LEDGERS = "Ledgers"
    GROUPS = "Groups"
    VOUCHERS = "Vouchers"
    STOCK_ITEMS = "StockItems"
    STOCK_GROUPS = "StockGroups"
    UNITS = "Units"
    COST_CENTRES = "CostCentres"
    GODOWNS = "Godowns"
    CURRENCIES = "Currencies"
    VOUCHER_TYPES = "VoucherTypes"

    @property
    def descriptor(self) -> TableDescriptor:
        return CATALOG[self]

    @classmethod
    def from_name(cls, name: str) -> "TableKind":
        """Convert external text (config, CLI) to a catalog entry."""
        try:
            return cls(name)
        except ValueError:
            raise UnknownTableError(
                f"Unknown table name: {name}. Valid: {[k.value for k in cls]}"
            ) from None


CATALOG: dict[TableKind, TableDescriptor] = {
    TableKind.LEDGERS: TableDescriptor(
        "Ledgers", "Chart of Accounts - Ledgers", "Ledger", "ledgers.xml.j2"
    ),
    TableKind.GROUPS: TableDescriptor(
        "Groups", "Ledger Groups", "Group", "groups.xml.j2"
    ),
    TableKind.VOUCHERS: TableDescriptor(
        "Vouchers", "All Vouchers/Transactions", "Voucher", "vouchers.xml.j2",
        needs_date_filter=True,
    ),
    TableKind.STOCK_ITEMS: TableDescriptor(
        "StockItems", "Inventory Items", "StockItem", "stock_items.xml.j2"
    ),
    TableKind.STOCK_GROUPS: TableDescriptor(
        "StockGroups", "Stock Groups", "StockGroup", "stock_groups.xml.j2"
    ),
    TableKind.UNITS: TableDescriptor(
        "Units", "Units of Measure", "Unit", "units.xml.j2"
    ),
    TableKind.COST_CENTRES: TableDescriptor(
        "CostCentres", "Cost Centers", "CostCentre", "cost_centres.xml.j2"
    ),
    TableKind.GODOWNS: TableDescriptor(
        "Godowns", "Warehouses/Godowns", "Godown", "godowns.xml.j2"
    ),
    TableKind.CURRENCIES: TableDescriptor(
        "Currencies", "Currency Masters", "Currency", "currencies.xml.j2"
    ),
    TableKind.VOUCHER_TYPES: TableDescriptor(
        "VoucherTypes", "Voucher Type Masters", "VoucherType", "voucher_types.xml.j2"
    ),
}


def available_tables() -> list[TableDescriptor]:
    """Return the catalog in declaration order."""
    return [CATALOG[kind] for kind in TableKind]


def resolve_table(table: "TableKind | TableDescriptor | str") -> TableDescriptor:
    """Accept any table reference and return its descriptor."""
    if isinstance(table, TableDescriptor):
        return table
    if isinstance(table, TableKind):
        return table.descriptor
    return TableKind.from_name(str(table)).descriptor
