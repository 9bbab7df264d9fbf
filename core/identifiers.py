import re
import uuid

ORDER_PREFIX = "ORD"
INVOICE_PREFIX = "INV"

_NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<value>\d+)$")


class SequenceGenerator:
    """UUID ids plus monotonic, human-readable document numbers.

    Counters are persisted alongside the collections. `observe()` advances a
    counter past a number that already exists, so numbers stay unique even
    when the counters were lost or the data was written by another client.
    """

    def __init__(self, counters=None):
        self.counters = {str(prefix): int(value) for prefix, value in (counters or {}).items()}

    def new_id(self):
        return str(uuid.uuid4())

    def next_number(self, prefix):
        value = self.counters.get(prefix, 0) + 1
        self.counters[prefix] = value
        return f"{prefix}-{value:06d}"

    def observe(self, number):
        match = _NUMBER_RE.match(str(number or ""))
        if match is None:
            return
        prefix = match.group("prefix")
        value = int(match.group("value"))
        if value > self.counters.get(prefix, 0):
            self.counters[prefix] = value

    def to_dict(self):
        return dict(self.counters)
