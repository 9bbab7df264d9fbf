import copy
import logging
from decimal import InvalidOperation

from common.exceptions import CorruptPersistedStateError
from core.identifiers import SequenceGenerator
from sales.domain import Invoice, Order

logger = logging.getLogger(__name__)

PRODUCTS = "products"
CUSTOMERS = "customers"
ORDERS = "orders"
INVOICES = "invoices"
SEQUENCES = "sequences"

COLLECTION_KEYS = (PRODUCTS, CUSTOMERS, ORDERS, INVOICES)

SEED_PRODUCTS = [
    {
        "id": "5b1e3c1e-3a53-4a8e-9d0c-0c1f6a1b0001",
        "name": "Industrial Widget",
        "sku": "WID-01",
        "stock": 5,
        "unit_price": "25.00",
    },
    {
        "id": "5b1e3c1e-3a53-4a8e-9d0c-0c1f6a1b0002",
        "name": "Heavy Duty Motor",
        "sku": "MOT-02",
        "stock": 8,
        "unit_price": "180.00",
    },
]

SEED_CUSTOMERS = [
    {
        "id": "7c2f4d2f-4b64-4b9f-8e1d-1d2a7b2c0001",
        "name": "Acme Corp",
        "email": "billing@acme.com",
        "status": "active",
    },
]

SEED_DEFAULTS = {
    PRODUCTS: SEED_PRODUCTS,
    CUSTOMERS: SEED_CUSTOMERS,
    ORDERS: [],
    INVOICES: [],
}

_RECORD_ERRORS = (KeyError, TypeError, ValueError, AttributeError, InvalidOperation)


def seed_default(key):
    return copy.deepcopy(SEED_DEFAULTS[key])


class ErpState:
    """The four ERP collections plus number sequences, bound to one store.

    Products and customers are kept as plain dicts; orders and invoices are
    typed records. Mutating components change this object in place and the
    caller persists the touched keys with `save()`.
    """

    def __init__(self, store, *, products=None, customers=None, orders=None, invoices=None, sequences=None):
        self.store = store
        self.products = products if products is not None else seed_default(PRODUCTS)
        self.customers = customers if customers is not None else seed_default(CUSTOMERS)
        self.orders = orders if orders is not None else []
        self.invoices = invoices if invoices is not None else []
        self.sequences = sequences or SequenceGenerator()

    @classmethod
    def load(cls, store):
        raw = {key: _load_key(store, key) for key in COLLECTION_KEYS}

        products = _decode_collection(PRODUCTS, raw[PRODUCTS], dict)
        customers = _decode_collection(CUSTOMERS, raw[CUSTOMERS], dict)
        orders = _decode_collection(ORDERS, raw[ORDERS], Order.from_dict)
        invoices = _decode_collection(INVOICES, raw[INVOICES], Invoice.from_dict)

        try:
            counters = store.get(SEQUENCES) or {}
            sequences = SequenceGenerator(counters)
        except (CorruptPersistedStateError, *_RECORD_ERRORS):
            logger.warning("corrupt_persisted_state", extra={"key": SEQUENCES})
            sequences = SequenceGenerator()

        for order in orders:
            sequences.observe(order.order_number)
        for invoice in invoices:
            sequences.observe(invoice.invoice_number)

        return cls(
            store,
            products=products,
            customers=customers,
            orders=orders,
            invoices=invoices,
            sequences=sequences,
        )

    def save(self, *keys):
        keys = keys or COLLECTION_KEYS + (SEQUENCES,)
        for key in keys:
            self.store.set(key, self.dump(key))

    def dump(self, key):
        if key == PRODUCTS:
            return self.products
        if key == CUSTOMERS:
            return self.customers
        if key == ORDERS:
            return [order.to_dict() for order in self.orders]
        if key == INVOICES:
            return [invoice.to_dict() for invoice in self.invoices]
        if key == SEQUENCES:
            return self.sequences.to_dict()
        raise KeyError(key)

    def reseed(self):
        self.products = seed_default(PRODUCTS)
        self.customers = seed_default(CUSTOMERS)
        self.orders = []
        self.invoices = []
        self.sequences = SequenceGenerator()

    def find_order(self, order_id):
        return next((order for order in self.orders if order.id == str(order_id)), None)

    def find_invoice(self, invoice_id):
        return next((invoice for invoice in self.invoices if invoice.id == str(invoice_id)), None)

    def find_customer(self, customer_id):
        return next((customer for customer in self.customers if str(customer.get("id")) == str(customer_id)), None)

    def search_text(self, number, customer_id):
        """Lowercased document number plus customer name, matched by list searches."""
        customer = self.find_customer(customer_id) or {}
        return f"{number} {customer.get('name', '')}".lower()


_CORRUPT = object()


def _load_key(store, key):
    try:
        return store.get(key)
    except CorruptPersistedStateError:
        logger.warning("corrupt_persisted_state", extra={"key": key})
        return _CORRUPT


def _decode_collection(key, value, decode):
    if value is None or value is _CORRUPT:
        return seed_default(key)
    if not isinstance(value, list):
        logger.warning("corrupt_persisted_state", extra={"key": key})
        return seed_default(key)
    try:
        return [decode(record) for record in value]
    except _RECORD_ERRORS:
        logger.warning("corrupt_persisted_state", extra={"key": key}, exc_info=True)
        return seed_default(key)
