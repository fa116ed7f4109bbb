from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict
from datetime import date
from typing import Any, Callable, Optional

from fastapi import Body, FastAPI, File, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, RedirectResponse

from ricemill.config import APP_NAME, log_level, server_host, server_port
from ricemill.dues import (
    add_due,
    check_dues_by_phone,
    clear_customer_dues,
    customer_due_info,
    customers_by_village,
    customers_with_dues,
    delete_due,
    format_due_display,
    search_dues,
    total_dues,
    total_dues_amount,
    unique_villages,
)
from ricemill.engine import (
    BillDraft,
    add_inventory_checkpoint,
    add_inventory_item,
    add_queue_customer,
    add_stock_checkpoint,
    add_stock_item,
    add_worker,
    calculate_hamali,
    calculate_selected_total,
    cleanup_expired_bin_items,
    days_remaining,
    delete_inventory_item,
    delete_transaction,
    delete_worker,
    filter_queue,
    find_inventory_mismatches,
    fix_inventory_mismatch,
    group_by_date,
    load_category,
    mark_salary_paid,
    quick_add_item,
    record_stock_sale,
    record_worker_payment,
    remove_from_bin,
    remove_queue_customer,
    restore_bin_item,
    save_transaction,
    search_stock_transactions,
    search_transactions,
    set_stock_counts,
    stock_rate_for,
    stock_value,
    update_inventory,
    update_rate,
    update_stock,
    update_worker,
    worker_status,
    worker_totals,
)
from ricemill.errors import NotFoundError, RiceMillError, ValidationError
from ricemill.models import MillState
from ricemill.reporting import summarize
from ricemill.storage import (
    backup_state,
    data_dir,
    export_state,
    exports_dir,
    import_state,
    load_state,
    reset_data_files,
    save_state,
    write_transactions_csv,
)

logger = logging.getLogger("ricemill.webapp")

_lock = threading.Lock()


def _ensure_state() -> MillState:
    state = load_state()
    if cleanup_expired_bin_items(state):
        save_state(state)
    return state


def _error(e: RiceMillError) -> JSONResponse:
    status = 404 if isinstance(e, NotFoundError) else 400
    return JSONResponse({"error": str(e)}, status_code=status)


def _payload_int(payload: dict, key: str, default: int = 0) -> int:
    try:
        return int(payload.get(key, default) or 0)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a whole number") from None


def _payload_float(payload: dict, key: str, default: float = 0.0) -> float:
    try:
        return float(payload.get(key, default) or 0.0)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number") from None


def _payload_str(payload: dict, key: str) -> str:
    return str(payload.get(key) or "").strip()


def _parse_day(value: Optional[str], label: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{label} must be a YYYY-MM-DD date") from None


def _draft_from_payload(state: MillState, payload: dict) -> BillDraft:
    draft = BillDraft(
        customer_name=_payload_str(payload, "customer_name"),
        village=_payload_str(payload, "village"),
        phone_number=_payload_str(payload, "phone_number"),
        load_brought=_payload_int(payload, "load_brought"),
        paid_amount=_payload_float(payload, "paid_amount"),
    )
    for raw in payload.get("items") or []:
        if not isinstance(raw, dict):
            continue
        name = _payload_str(raw, "name")
        quick_add_item(state, draft, name)
        if "rate" in raw:
            draft.update_item_rate(name, _payload_float(raw, "rate"))
        if "quantity" in raw:
            draft.update_item_quantity(name, _payload_int(raw, "quantity", 1))
    return draft


def _state_to_dto(state: MillState) -> dict:
    dto = export_state(state)
    borrowed, paid, due = worker_totals(state.workers)
    dto["summary"] = {
        "queue_count": len(state.queue),
        "transaction_count": len(state.transactions),
        "stock_transaction_count": len(state.stock_transactions),
        "bin_count": len(state.bin),
        "billing_dues": total_dues_amount(state),
        "due_records_total": total_dues(state.dues),
        "workers": {"borrowed": borrowed, "paid": paid, "due": due},
    }
    return dto


def create_app() -> FastAPI:
    app = FastAPI(title="Rice Mill Management API")

    # Allow a local frontend.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    data_dir()

    def _mutate(action: Callable[[MillState], Any]) -> Any:
        with _lock:
            state = _ensure_state()
            try:
                result = action(state)
            except RiceMillError as e:
                return _error(e)
            save_state(state)
        return result

    def _read(action: Callable[[MillState], Any]) -> Any:
        with _lock:
            state = _ensure_state()
            try:
                return action(state)
            except RiceMillError as e:
                return _error(e)

    @app.get("/")
    def root():
        return {
            "name": APP_NAME,
            "api": "/api/state",
            "downloads": ["/download/state", "/download/transactions"],
            "ops": "/ops",
        }

    @app.get("/ops", response_class=HTMLResponse)
    def ops_home():
        return """<!doctype html>
<html lang=\"en\">
  <head>
    <meta charset=\"utf-8\" />
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />
    <title>Rice Mill Ops</title>
    <style>
      body{font-family:ui-sans-serif,system-ui,-apple-system,Segoe UI,Roboto,Arial;max-width:960px;margin:24px auto;padding:0 16px;line-height:1.5}
      h1{font-size:20px;margin:0 0 12px}
      h2{font-size:16px;margin:18px 0 8px}
      .card{border:1px solid #e5e7eb;border-radius:10px;padding:14px;margin:10px 0;background:#fff}
      input,button{font-size:14px}
      .row{display:flex;gap:10px;align-items:center;flex-wrap:wrap}
      .muted{color:#6b7280;font-size:12px}
      code{background:#f3f4f6;padding:2px 6px;border-radius:6px}
    </style>
  </head>
  <body>
    <h1>Import / Export</h1>
    <div class=\"card\">
      <div class=\"row\">
        <a href=\"/download/state\">Download state.json</a>
        <a href=\"/download/transactions\">Download transactions.csv</a>
      </div>
      <div class=\"muted\">JSON API lives under <code>/api/*</code>.</div>
    </div>

    <h2>Import state.json</h2>
    <div class=\"card\">
      <form class=\"row\" action=\"/ops/import/state\" method=\"post\" enctype=\"multipart/form-data\">
        <input type=\"file\" name=\"file\" accept=\"application/json,.json\" required />
        <button type=\"submit\">Upload and replace</button>
      </form>
      <div class=\"muted\">The current data is backed up to <code>data/exports/</code> before it is replaced.</div>
    </div>

    <h2>Reset</h2>
    <div class=\"card\">
      <form class=\"row\" action=\"/ops/reset\" method=\"post\" onsubmit=\"return confirm('Delete all rice mill data?');\">
        <button type=\"submit\">Reset data</button>
      </form>
    </div>
  </body>
</html>"""

    def _replace_state(imported: MillState) -> MillState:
        with _lock:
            backup_state(load_state())
            save_state(imported)
        return imported

    @app.post("/ops/import/state")
    async def ops_import_state(file: UploadFile = File(...)):
        raw = await file.read()
        try:
            payload = json.loads(raw.decode("utf-8"))
            imported = import_state(payload)
        except (UnicodeDecodeError, ValueError) as e:
            return HTMLResponse(f"Import failed: {e}", status_code=400)
        await run_in_threadpool(_replace_state, imported)
        logger.info("Imported state from %s", file.filename)
        return RedirectResponse(url="/ops", status_code=303)

    @app.post("/ops/reset")
    def ops_reset():
        with _lock:
            reset_data_files()
        logger.info("Data reset from ops page")
        return RedirectResponse(url="/ops", status_code=303)

    # -------------------- JSON API --------------------

    @app.get("/api/state")
    def api_state():
        with _lock:
            state = _ensure_state()
            dto = _state_to_dto(state)
        return dto

    @app.post("/api/state/import")
    def api_state_import(payload: dict = Body(...)):
        try:
            imported = import_state(payload)
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return _state_to_dto(_replace_state(imported))

    @app.post("/api/reset")
    def api_reset():
        with _lock:
            reset_data_files()
            state = _ensure_state()
            dto = _state_to_dto(state)
        return dto

    # Queue

    @app.get("/api/queue")
    def api_queue(search: str = "", load_filter: str = "all", sort: str = "desc"):
        def action(state: MillState) -> dict:
            rows = filter_queue(state.queue, search, load_filter, sort)
            return {"queue": [dict(asdict(c), load_category=load_category(c.load_brought)) for c in rows]}

        return _read(action)

    @app.post("/api/queue")
    def api_queue_add(payload: dict = Body(...)):
        return _mutate(
            lambda state: asdict(
                add_queue_customer(
                    state,
                    _payload_str(payload, "name"),
                    _payload_str(payload, "phone_number"),
                    payload.get("load_brought"),
                    _payload_str(payload, "driver_name"),
                    _payload_str(payload, "driver_phone"),
                    _payload_str(payload, "village"),
                )
            )
        )

    @app.delete("/api/queue/{customer_id}")
    def api_queue_remove(customer_id: str):
        return _mutate(lambda state: asdict(remove_queue_customer(state, customer_id)))

    # Billing

    @app.get("/api/rates")
    def api_rates():
        return _read(lambda state: asdict(state.rates))

    @app.put("/api/rates")
    def api_rates_update(payload: dict = Body(default={})):
        def action(state: MillState) -> dict:
            for key, value in payload.items():
                update_rate(state, str(key), value)
            return asdict(state.rates)

        return _mutate(action)

    @app.post("/api/billing")
    def api_billing(payload: dict = Body(...)):
        def action(state: MillState) -> dict:
            draft = _draft_from_payload(state, payload)
            result = save_transaction(state, draft, queue_id=_payload_str(payload, "queue_id") or None)
            return {"transaction": asdict(result.record), "dues_alert": result.dues_alert}

        return _mutate(action)

    @app.get("/api/billing/dues-check/{phone}")
    def api_billing_dues_check(phone: str):
        def action(state: MillState) -> dict:
            check = check_dues_by_phone(state, phone)
            return {"dues": asdict(check) if check else None}

        return _read(action)

    # Transactions & bin

    @app.get("/api/transactions")
    def api_transactions(search: str = "", due_only: bool = False):
        def action(state: MillState) -> dict:
            rows = search_transactions(state.transactions, search, due_only)
            return {"groups": [{"date": d, "transactions": [asdict(t) for t in txns]} for d, txns in group_by_date(rows).items()]}

        return _read(action)

    @app.post("/api/transactions/totals")
    def api_transactions_totals(payload: dict = Body(default={})):
        ids = [str(x) for x in (payload.get("ids") or [])]
        return _read(
            lambda state: {
                "hamali": calculate_hamali(state.transactions, ids),
                "total": calculate_selected_total(state.transactions, ids),
            }
        )

    @app.delete("/api/transactions/{txn_id}")
    def api_transaction_delete(txn_id: str, restore_inventory: bool = False):
        return _mutate(
            lambda state: {"restored_items": delete_transaction(state, txn_id, restore_inventory=restore_inventory)}
        )

    @app.get("/api/bin")
    def api_bin():
        return _read(lambda state: {"items": [dict(asdict(b), days_remaining=days_remaining(b)) for b in state.bin]})

    @app.post("/api/bin/{item_id}/restore")
    def api_bin_restore(item_id: str):
        return _mutate(lambda state: asdict(restore_bin_item(state, item_id)))

    @app.delete("/api/bin/{item_id}")
    def api_bin_delete(item_id: str):
        def action(state: MillState) -> dict:
            remove_from_bin(state, item_id)
            return {"deleted": item_id}

        return _mutate(action)

    # Store

    @app.get("/api/stock")
    def api_stock():
        def action(state: MillState) -> dict:
            rows = []
            for s in state.stock:
                rate = stock_rate_for(state, s.name)
                rows.append(dict(asdict(s), total_kg=s.total_kg(), rate_per_kg=rate, value=stock_value(s, rate)))
            return {"stock": rows, "checkpoints": [asdict(c) for c in state.stock_checkpoints]}

        return _read(action)

    @app.post("/api/stock")
    def api_stock_add(payload: dict = Body(...)):
        rate = payload.get("rate_per_kg")
        return _mutate(
            lambda state: asdict(
                add_stock_item(
                    state,
                    _payload_str(payload, "name"),
                    None if rate is None else _payload_float(payload, "rate_per_kg"),
                )
            )
        )

    @app.post("/api/stock/{name}/adjust")
    def api_stock_adjust(name: str, payload: dict = Body(default={})):
        return _mutate(
            lambda state: asdict(
                update_stock(state, name, _payload_int(payload, "kg25_change"), _payload_int(payload, "kg50_change"))
            )
        )

    @app.put("/api/stock/{name}")
    def api_stock_set(name: str, payload: dict = Body(default={})):
        return _mutate(
            lambda state: asdict(set_stock_counts(state, name, _payload_int(payload, "kg25"), _payload_int(payload, "kg50")))
        )

    @app.post("/api/stock/{name}/checkpoint")
    def api_stock_checkpoint(name: str):
        return _mutate(lambda state: asdict(add_stock_checkpoint(state, name)))

    @app.get("/api/inventory")
    def api_inventory():
        return _read(
            lambda state: {
                "inventory": [asdict(i) for i in state.inventory],
                "checkpoints": [asdict(c) for c in state.inventory_checkpoints],
            }
        )

    @app.post("/api/inventory")
    def api_inventory_add(payload: dict = Body(...)):
        return _mutate(lambda state: asdict(add_inventory_item(state, _payload_str(payload, "name"))))

    @app.post("/api/inventory/{name}/adjust")
    def api_inventory_adjust(name: str, payload: dict = Body(default={})):
        return _mutate(lambda state: asdict(update_inventory(state, name, _payload_int(payload, "change"))))

    @app.delete("/api/inventory/{name}")
    def api_inventory_delete(name: str):
        return _mutate(lambda state: asdict(delete_inventory_item(state, name)))

    @app.post("/api/inventory/{name}/checkpoint")
    def api_inventory_checkpoint(name: str):
        return _mutate(lambda state: asdict(add_inventory_checkpoint(state, name)))

    @app.get("/api/inventory/mismatches")
    def api_inventory_mismatches():
        return _read(lambda state: {"mismatches": [asdict(m) for m in find_inventory_mismatches(state)]})

    @app.post("/api/inventory/{name}/fix")
    def api_inventory_fix(name: str, payload: dict = Body(default={})):
        return _mutate(lambda state: asdict(fix_inventory_mismatch(state, name, _payload_int(payload, "count"))))

    @app.get("/api/stock-sales")
    def api_stock_sales(search: str = ""):
        return _read(
            lambda state: {"sales": [asdict(s) for s in search_stock_transactions(state.stock_transactions, search)]}
        )

    @app.post("/api/stock-sales")
    def api_stock_sale(payload: dict = Body(...)):
        def action(state: MillState) -> dict:
            rate = payload.get("rate_per_kg")
            result = record_stock_sale(
                state,
                _payload_str(payload, "customer_name"),
                _payload_str(payload, "phone_number"),
                _payload_str(payload, "village"),
                _payload_str(payload, "stock_bought"),
                kg25_bags=_payload_int(payload, "kg25_bags"),
                kg50_bags=_payload_int(payload, "kg50_bags"),
                custom_weight=_payload_float(payload, "custom_weight"),
                rate_per_kg=None if rate in (None, "") else _payload_float(payload, "rate_per_kg"),
                paid_amount=_payload_float(payload, "paid_amount"),
            )
            return {"sale": asdict(result.record), "dues_alert": result.dues_alert}

        return _mutate(action)

    # Dues

    @app.get("/api/dues")
    def api_dues(search: str = ""):
        def action(state: MillState) -> dict:
            rows = search_dues(state.dues, search)
            return {
                "dues": [asdict(d) for d in rows],
                "total": total_dues(rows),
                "customers": customers_with_dues(state),
            }

        return _read(action)

    @app.post("/api/dues")
    def api_due_add(payload: dict = Body(...)):
        return _mutate(
            lambda state: asdict(
                add_due(
                    state,
                    _payload_str(payload, "customer_name"),
                    payload.get("amount"),
                    _payload_str(payload, "type") or "custom",
                    _payload_str(payload, "stock_type"),
                    _payload_str(payload, "description"),
                    _payload_str(payload, "phone_number"),
                )
            )
        )

    @app.delete("/api/dues/{due_id}")
    def api_due_delete(due_id: str):
        def action(state: MillState) -> dict:
            delete_due(state, due_id)
            return {"deleted": due_id}

        return _mutate(action)

    @app.get("/api/customers/{phone}/dues")
    def api_customer_dues(phone: str):
        def action(state: MillState) -> dict:
            info = customer_due_info(state, phone)
            return dict(asdict(info), has_any_due=info.has_any_due, display=format_due_display(info))

        return _read(action)

    @app.post("/api/customers/{phone}/dues/clear")
    def api_customer_dues_clear(phone: str):
        return _mutate(lambda state: {"cleared": clear_customer_dues(state, phone)})

    @app.get("/api/villages")
    def api_villages():
        return _read(lambda state: {"villages": unique_villages(state)})

    @app.get("/api/villages/{village}/customers")
    def api_village_customers(village: str):
        return _read(lambda state: {"customers": customers_by_village(state, village)})

    # Workers

    @app.get("/api/workers")
    def api_workers():
        def action(state: MillState) -> dict:
            borrowed, paid, due = worker_totals(state.workers)
            return {
                "workers": [dict(asdict(w), status=worker_status(w)) for w in state.workers],
                "totals": {"borrowed": borrowed, "paid": paid, "due": due},
            }

        return _read(action)

    @app.post("/api/workers")
    def api_worker_add(payload: dict = Body(...)):
        return _mutate(
            lambda state: asdict(
                add_worker(state, _payload_str(payload, "name"), payload.get("borrowed_amount"), payload.get("salary"))
            )
        )

    @app.put("/api/workers/{worker_id}")
    def api_worker_update(worker_id: str, payload: dict = Body(default={})):
        return _mutate(
            lambda state: asdict(
                update_worker(state, worker_id, payload.get("borrowed_amount"), payload.get("salary"))
            )
        )

    @app.post("/api/workers/{worker_id}/payment")
    def api_worker_payment(worker_id: str, payload: dict = Body(default={})):
        return _mutate(lambda state: asdict(record_worker_payment(state, worker_id, payload.get("amount"))))

    @app.post("/api/workers/{worker_id}/paid")
    def api_worker_paid(worker_id: str):
        return _mutate(lambda state: asdict(mark_salary_paid(state, worker_id)))

    @app.delete("/api/workers/{worker_id}")
    def api_worker_delete(worker_id: str):
        def action(state: MillState) -> dict:
            delete_worker(state, worker_id)
            return {"deleted": worker_id}

        return _mutate(action)

    # Analytics

    @app.get("/api/analytics")
    def api_analytics(day: Optional[str] = None, start: Optional[str] = None, end: Optional[str] = None):
        return _read(
            lambda state: asdict(
                summarize(
                    state,
                    day=_parse_day(day, "day"),
                    start=_parse_day(start, "start"),
                    end=_parse_day(end, "end"),
                )
            )
        )

    # -------------------- Downloads --------------------

    @app.get("/download/state")
    def download_state():
        with _lock:
            state = _ensure_state()
            p = exports_dir() / "state.json"
            p.write_text(json.dumps(export_state(state), ensure_ascii=False, indent=2), encoding="utf-8")
        return FileResponse(str(p), filename="state.json")

    @app.get("/download/transactions")
    def download_transactions():
        with _lock:
            p = write_transactions_csv(_ensure_state())
        return FileResponse(str(p), filename="transactions.csv", media_type="text/csv")

    return app


app = create_app()


def serve() -> int:
    import uvicorn

    logging.basicConfig(level=log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("ricemill.webapp:app", host=server_host(), port=server_port(), reload=False)
    return 0
