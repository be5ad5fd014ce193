"""
Deal Intake Demonstration

Capture agents extract deal fields from a free-text request. A validation
node loops back for clarification while fields are missing, and a guard
sends oversized deals to manual review instead of creating them.

Scenario:
- Three requests submitted with different priorities
- Concurrency ceiling of 2
- One request is missing its quantity and is clarified once
- One request exceeds the auto-approval limit

Run:
    PYTHONPATH=src python examples/deal_intake.py
"""

import asyncio
import logging
import re

from pydealflow import ExecutionOptions, Node, Runtime, logging_sink

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("pydealflow.events").setLevel(logging.WARNING)

AUTO_APPROVE_GALLONS = 50_000


class Capture(Node):
    """Extracts one field from shared["message"] with a regex."""

    field_name = ""
    pattern = ""

    def prepare(self, shared):
        return shared["message"]

    async def execute(self, message):
        await asyncio.sleep(0.05)
        match = re.search(self.pattern, message, re.IGNORECASE)
        return match.group(1) if match else None

    def finalize(self, shared, prep_res, exec_res):
        if exec_res is not None:
            shared[self.field_name] = exec_res


class CaptureCustomer(Capture):
    field_name = "customer"
    pattern = r"for ([A-Z][\w ]+?)(?: to| at|$)"


class CaptureProduct(Capture):
    field_name = "product"
    pattern = r"(diesel|gasoline|jet fuel)"


class CaptureQuantity(Capture):
    field_name = "quantity"
    pattern = r"(\d+)k gallons"

    def finalize(self, shared, prep_res, exec_res):
        if exec_res is not None:
            shared["quantity"] = int(exec_res) * 1000


class Validate(Node):
    def finalize(self, shared, prep_res, exec_res):
        shared["missing"] = [f for f in ("customer", "product", "quantity") if f not in shared]
        return "incomplete" if shared["missing"] else "complete"


class AskForDetails(Node):
    """Stands in for a chat turn: appends the user's reply to the message."""

    def finalize(self, shared, prep_res, exec_res):
        shared["message"] += " " + shared["replies"].pop(0)
        return "retry"


class CreateDeal(Node):
    def finalize(self, shared, prep_res, exec_res):
        shared["deal"] = f"{shared['customer']}: {shared['quantity']} gal {shared['product']}"


class ManualReview(Node):
    def finalize(self, shared, prep_res, exec_res):
        shared["deal"] = "sent to manual review"


INTAKE_FLOW = {
    "name": "deal-intake",
    "description": "Capture, validate and create a fuel deal",
    "start_node": "customer",
    "global_retry": {"max_attempts": 2, "delay_ms": 10},
    "nodes": {
        "customer": {"agent": "capture-customer", "transitions": [{"action": "default", "target": "product"}]},
        "product": {"agent": "capture-product", "transitions": [{"action": "default", "target": "quantity"}]},
        "quantity": {"agent": "capture-quantity", "transitions": [{"action": "default", "target": "validate"}]},
        "validate": {
            "agent": "validate",
            "transitions": [
                {"action": "incomplete", "target": "ask"},
                {
                    "action": "complete",
                    "target": "create",
                    "guard": lambda s: s["quantity"] <= AUTO_APPROVE_GALLONS,
                },
            ],
        },
        "ask": {"agent": "ask", "transitions": [{"action": "retry", "target": "customer"}]},
        "create": {"agent": "create-deal", "transitions": [{"action": "skip", "target": "review"}]},
        "review": {"agent": "manual-review"},
    },
}


async def main():
    runtime = Runtime.create(max_concurrent=2, sinks=[logging_sink])

    registry = runtime.registry
    registry.register("capture-customer", CaptureCustomer(), {"capabilities": ["intake"]})
    registry.register("capture-product", CaptureProduct(), {"capabilities": ["intake"]})
    registry.register("capture-quantity", CaptureQuantity(), {"capabilities": ["intake"]})
    registry.register("validate", Validate(), {"dependencies": ["capture-customer"]})
    registry.register("ask", AskForDetails())
    registry.register("create-deal", CreateDeal(), {"dependencies": ["validate"]})
    registry.register("manual-review", ManualReview())

    validation = runtime.configs.register_config(INTAKE_FLOW)
    print(f"Registered deal-intake with warnings: {validation.warnings}")

    requests = [
        ({"message": "20k gallons diesel for Acme Fuel to Tulsa"}, 1),
        ({"message": "gasoline for Prairie Farms at Wichita", "replies": ["make it 15k gallons"]}, 5),
        ({"message": "900k gallons jet fuel for Skyline Air"}, 3),
    ]
    handles = [
        runtime.scheduler.submit("deal-intake", state, ExecutionOptions(priority=p, timeout_ms=5_000))
        for state, p in requests
    ]

    for handle, (state, _) in zip(handles, requests):
        result = await handle
        print(f"{result.run_id[-8:]} steps={result.steps_executed} -> {state['deal']}")

    print(runtime.scheduler.execution_summary())
    await runtime.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
