from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter("request_count", "Total requests", ["method", "endpoint"])
REQUEST_LATENCY = Histogram(
    "request_latency_seconds", "Request latency", ["endpoint"]
)

CUSTODY_TRANSITIONS = Counter(
    "custody_transitions_total",
    "Committed custody transitions",
    ["transition", "method"],
)
ADMISSION_REJECTIONS = Counter(
    "custody_admission_rejections_total",
    "Check-ins refused by the engine",
    ["reason"],
)
PIN_REJECTIONS = Counter(
    "custody_pin_rejections_total",
    "Checkout attempts refused because of a wrong PIN",
    ["provenance"],
)
