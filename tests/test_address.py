from dispatch_app.models.domain import AddressFields, CustomerProfile, QuoteRecord
from dispatch_app.services.geocoding.address import (
    AddressSourceLoader,
    address_hash,
    address_to_line,
    merge_address_fields,
    resolve_address,
)

from conftest import TENANT, denver_address, make_stop


def test_address_line_skips_blank_parts():
    fields = AddressFields(street=" 123 Main St ", line2="", city="Denver", state="CO", postal_code="80202")
    assert address_to_line(fields) == "123 Main St, Denver, CO, 80202"


def test_stop_fields_take_precedence_per_field():
    stop = make_stop("S1", address=AddressFields(street="9 Elm St", city="  "))
    customer = CustomerProfile("C1", AddressFields(street="1 Old Rd", city="Boulder", state="CO"))
    quote = QuoteRecord("Q1", AddressFields(postal_code="80301", city="Lafayette"))

    resolved = resolve_address(stop, customer, quote)

    assert resolved.fields.street == "9 Elm St"
    assert resolved.fields.city == "Boulder"
    assert resolved.fields.postal_code == "80301"
    assert resolved.source == "stop"


def test_fallback_source_when_stop_has_no_address():
    stop = make_stop("S1")
    resolved = resolve_address(stop, None, QuoteRecord("Q1", denver_address()))

    assert resolved.line == "123 Main St, Denver, CO, 80202"
    assert resolved.source == "customer_or_quote"


def test_empty_everywhere_resolves_to_none_source():
    resolved = resolve_address(make_stop("S1"))

    assert resolved.is_empty
    assert resolved.source == "none"
    assert resolved.hash == ""


def test_hash_ignores_case_and_whitespace():
    assert address_hash("123 Main St,  Denver") == address_hash(" 123 main st, denver ")
    assert address_hash("123 Main St") != address_hash("124 Main St")


def test_merge_skips_missing_layers():
    merged = merge_address_fields(None, AddressFields(city="Denver"), None)
    assert merged == AddressFields(city="Denver")


def test_loader_caches_fallback_lookups(store):
    store.add_customer(TENANT, CustomerProfile("C1", denver_address()))
    calls = []
    original = store.get_customer

    def counting_get_customer(tenant_id, customer_id):
        calls.append(customer_id)
        return original(tenant_id, customer_id)

    store.get_customer = counting_get_customer
    loader = AddressSourceLoader(store, TENANT)

    first = loader.resolve(make_stop("S1", customer_id="C1"))
    second = loader.resolve(make_stop("S2", customer_id="C1"))

    assert first.line == second.line == "123 Main St, Denver, CO, 80202"
    assert calls == ["C1"]


def test_stop_city_combines_with_customer_street():
    stop = make_stop("S1", customer_id="C1", address=AddressFields(city="Denver"))
    customer = CustomerProfile("C1", AddressFields(street="123 Main St"))

    assert resolve_address(stop, customer).line == "123 Main St, Denver"
