"""Example FastAPI pizza service instrumented with telemetripy.

Run with:
    TELEMETRY_LOGS_URL=https://logs.example.com/loki/api/v1/push \
    TELEMETRY_LOGS_API_KEY=... TELEMETRY_LOGS_USER_ID=... \
    TELEMETRY_METRICS_URL=https://otlp.example.com/otlp/v1/metrics \
    TELEMETRY_METRICS_API_KEY=... \
    uvicorn examples.pizza_service:app --reload

Endpoints:
    PUT  /api/auth          - login; counted in auth_attempts{status}
    POST /api/order         - create an order; counted in pizza_purchases,
                              pizza_revenue and pizza_creation_failures
    GET  /api/order/{id}    - latency reported under the route template
    GET  /health            - excluded from telemetry

Without sink settings the schedulers still run but flushes are no-ops.
"""

import logging

from fastapi import FastAPI, HTTPException

from telemetripy import BatcherLogHandler, Telemetry
from telemetripy.adapters.db import wrap_query
from telemetripy.adapters.frameworks.fastapi import create_lifespan, install_telemetry
from telemetripy.adapters.logging import configure_logging

configure_logging(log_level="INFO", log_format="console")

telemetry = Telemetry()

# Forward application log records alongside the request telemetry
app_logger = logging.getLogger("pizza")
app_logger.addHandler(BatcherLogHandler(telemetry.log_batcher))
app_logger.setLevel(logging.INFO)

MENU = {1: {"title": "Veggie", "price": 0.0038}, 2: {"title": "Pepperoni", "price": 0.0042}}
USERS = {"d@jwt.com": {"id": 1, "name": "pizza diner", "password": "diner"}}


def fetch_menu_item(connection: object, sql: str, item_id: int) -> dict | None:
    return MENU.get(item_id)


query_menu = wrap_query(telemetry.log_batcher, fetch_menu_item)

app = FastAPI(title="Pizza Service", lifespan=create_lifespan(telemetry))


@app.put("/api/auth")
async def login(credentials: dict) -> dict:
    user = USERS.get(credentials.get("email", ""))
    if user is None or user["password"] != credentials.get("password"):
        raise HTTPException(status_code=404, detail="unknown user")
    return {"user": {"id": user["id"], "name": user["name"]}, "token": "session-token"}


@app.post("/api/order")
async def create_order(order: dict) -> dict:
    items = []
    for item_id in order.get("menuItemIds", []):
        item = query_menu(None, "SELECT title, price FROM menu WHERE id=?", item_id)
        if item is None:
            raise HTTPException(status_code=400, detail=f"unknown menu item {item_id}")
        items.append(item)
    telemetry.log_batcher.log_factory_request(
        url="https://factory.example.com/api/order",
        method="POST",
        request_body={"items": items},
        response_body={"reportUrl": "https://factory.example.com/report"},
        status_code=200,
    )
    app_logger.info("order created", extra={"items": len(items)})
    return {"order": {"id": 1, "items": items}}


@app.get("/api/order/{order_id}")
async def get_order(order_id: int) -> dict:
    return {"id": order_id}


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


install_telemetry(app, telemetry, exclude_paths=["/health"])
