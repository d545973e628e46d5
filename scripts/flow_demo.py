import logging
from dotenv import load_dotenv

from msgflow import IntegrationBuilder, IntegrationSettings, RecipientListError

load_dotenv()
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

# ---------------------------------------------------------------------------
# Settings come from MSGFLOW_* variables (or a .env file)
# ---------------------------------------------------------------------------

builder = IntegrationBuilder(settings=IntegrationSettings.from_env())

# ---------------------------------------------------------------------------
# Shared normalisation flow, reused below with exec()
# ---------------------------------------------------------------------------

normalise = builder.message_flow(
    builder.transform(lambda p: {**p, "type": p["type"].strip().lower()}),
    name="normalise",
)

# ---------------------------------------------------------------------------
# Order handling: route on the message type, fan audits out to two sinks
# ---------------------------------------------------------------------------

audit_log = []

builder.message_flow(builder.handle(lambda p: audit_log.append(("ledger", p["id"]))),
                     name="ledger")
builder.message_flow(builder.handle(lambda p: audit_log.append(("archive", p["id"]))),
                     name="archive")

orders = builder.message_flow(
    builder.exec(normalise),
    builder.route(
        lambda p: p["type"],
        builder.when("order", builder.transform(lambda p: f"order {p['id']} accepted")),
        builder.when(
            "audit",
            builder.route(lambda p: ["ledger.inputChannel", "archive.inputChannel"]),
        ),
        builder.otherwise(builder.transform(lambda p: f"{p['type']!r} is not supported")),
    ),
    name="orders",
)

# ---------------------------------------------------------------------------
# Drive it
# ---------------------------------------------------------------------------

for payload in [
    {"id": 1, "type": " Order "},
    {"id": 2, "type": "refund"},
    {"id": 3, "type": "AUDIT"},
]:
    try:
        print(f"{payload['id']}: {orders.send_and_receive(payload)}")
    except RecipientListError as exc:
        print(f"{payload['id']}: {exc}")

print(f"audit log: {audit_log}")
print(builder.context.describe().model_dump_json(indent=2))
