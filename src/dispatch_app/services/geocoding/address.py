"""Canonical address resolution for a stop from its layered sources.

Each field is taken from the stop itself when set, otherwise from the
customer profile, otherwise from the quote request. Blank strings count as
unset. The module is pure: callers fetch the fallback records.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Literal, Optional

from ...models.domain import AddressFields, CustomerProfile, QuoteRecord, ServiceStop

ADDRESS_FIELDS = ("street", "line2", "city", "state", "postal_code")

AddressSource = Literal["stop", "customer_or_quote", "none"]

_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class ResolvedAddress:
    fields: AddressFields
    line: str
    source: AddressSource

    @property
    def is_empty(self) -> bool:
        return not self.line

    @property
    def hash(self) -> str:
        return address_hash(self.line)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def has_address(address: AddressFields) -> bool:
    return any(_clean(getattr(address, name)) for name in ADDRESS_FIELDS)


def address_to_line(address: AddressFields) -> str:
    """Comma-join the non-blank parts in street, line2, city, state, postal order."""
    parts = [_clean(getattr(address, name)) for name in ADDRESS_FIELDS]
    return ", ".join(part for part in parts if part)


def address_hash(line: str) -> str:
    """Change-detection hash of an address line; empty for an empty line."""
    normalized = _WHITESPACE.sub(" ", (line or "").strip().lower())
    if not normalized:
        return ""
    return hashlib.sha1(normalized.encode("utf-8")).hexdigest()


def merge_address_fields(*layers: Optional[AddressFields]) -> AddressFields:
    """Per-field precedence: the first layer with a non-blank value wins."""
    merged: dict[str, Optional[str]] = {}
    for name in ADDRESS_FIELDS:
        merged[name] = None
        for layer in layers:
            if layer is None:
                continue
            value = _clean(getattr(layer, name))
            if value:
                merged[name] = value
                break
    return AddressFields(**merged)


def resolve_address(
    stop: ServiceStop,
    customer: Optional[CustomerProfile] = None,
    quote: Optional[QuoteRecord] = None,
) -> ResolvedAddress:
    fields = merge_address_fields(
        stop.address,
        customer.address if customer else None,
        quote.address if quote else None,
    )
    line = address_to_line(fields)
    if has_address(stop.address):
        source: AddressSource = "stop"
    elif line:
        source = "customer_or_quote"
    else:
        source = "none"
    return ResolvedAddress(fields=fields, line=line, source=source)


class AddressSourceLoader:
    """Fetches fallback records for stops and caches them per instance.

    One loader is meant to live for a single scan or request, so repeated
    customers and quotes are read once.
    """

    def __init__(self, store, tenant_id: str) -> None:
        self.store = store
        self.tenant_id = tenant_id
        self._customers: dict[str, Optional[CustomerProfile]] = {}
        self._quotes: dict[str, Optional[QuoteRecord]] = {}

    def customer(self, customer_id: Optional[str]) -> Optional[CustomerProfile]:
        if not customer_id:
            return None
        if customer_id not in self._customers:
            self._customers[customer_id] = self.store.get_customer(self.tenant_id, customer_id)
        return self._customers[customer_id]

    def quote(self, quote_id: Optional[str]) -> Optional[QuoteRecord]:
        if not quote_id:
            return None
        if quote_id not in self._quotes:
            self._quotes[quote_id] = self.store.get_quote(self.tenant_id, quote_id)
        return self._quotes[quote_id]

    def resolve(self, stop: ServiceStop) -> ResolvedAddress:
        # Skip fallback lookups when the stop carries every field itself.
        if all(_clean(getattr(stop.address, name)) for name in ADDRESS_FIELDS):
            return resolve_address(stop)
        return resolve_address(stop, self.customer(stop.customer_id), self.quote(stop.quote_id))
