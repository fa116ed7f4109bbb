from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Dict, Optional

from ricemill.config import log_level
from ricemill.dues import add_due, clear_customer_dues, customer_due_info, delete_due, format_due_display, search_dues
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
    search_transactions,
    stock_rate_for,
    stock_value,
    update_inventory,
    update_rate,
    update_stock,
    update_worker,
)
from ricemill.errors import RiceMillError
from ricemill.models import MillState
from ricemill.presets import BILLING_ITEM_RATE_KEYS
from ricemill.reporting import format_money, print_dues_overview, print_summary, print_workers, summarize
from ricemill.storage import load_state, save_state

logger = logging.getLogger("ricemill.cli")


def _input_int(prompt: str, default: Optional[int] = None) -> Optional[int]:
    s = input(prompt).strip()
    if not s:
        return default
    try:
        return int(s)
    except ValueError:
        print("Invalid input: enter a whole number.")
        return None


def _input_float(prompt: str, default: Optional[float] = None) -> Optional[float]:
    s = input(prompt).strip()
    if not s:
        return default
    try:
        return float(s)
    except ValueError:
        print("Invalid input: enter a number.")
        return None


def _show_due_alert(alert: Optional[dict]) -> None:
    if not alert:
        return
    print(
        f"!! {alert['customer_name']} {alert['phone_number']} has pending payments: "
        f"{format_money(alert['due_amount'])} over {alert['transaction_count']} bill(s)"
    )


def _cmd_queue(state: MillState) -> None:
    print("\n1) Add customer  2) List queue  3) Remove customer")
    sub = input("Choose: ").strip()
    if sub == "1":
        name = input("Customer name: ").strip()
        phone = input("Phone number: ").strip()
        load = _input_int("Load brought (bags): ")
        if load is None:
            return
        driver = input("Driver name (optional): ").strip()
        driver_phone = input("Driver phone (optional): ").strip()
        village = input("Village (optional): ").strip()
        c = add_queue_customer(state, name, phone, load, driver, driver_phone, village)
        print(f"Queued {c.name} ({c.load_brought} bags) at {c.arrival_time}.")
    elif sub == "2":
        term = input("Search (blank = all): ").strip()
        lf = input("Load filter all/low/medium/high [all]: ").strip() or "all"
        order = input("Sort desc/asc [desc]: ").strip() or "desc"
        rows = filter_queue(state.queue, term, lf, order)
        for c in rows:
            print(f"- {c.id}: {c.name} {c.phone_number}  {c.load_brought} bags ({load_category(c.load_brought)})  {c.date} {c.arrival_time}")
        print(f"{len(rows)} customer(s).")
    elif sub == "3":
        c = remove_queue_customer(state, input("Customer id: ").strip())
        print(f"Removed {c.name} from the queue.")
    else:
        print("Invalid option.")


def _cmd_billing(state: MillState) -> None:
    draft = BillDraft()
    queue_id = None
    if state.queue:
        qid = input("Bill a queued customer? id (blank = new customer): ").strip()
        picked = next((c for c in state.queue if c.id == qid), None)
        if picked is not None:
            queue_id = picked.id
            draft.customer_name = picked.name
            draft.phone_number = picked.phone_number
            draft.village = picked.village
            draft.load_brought = picked.load_brought
    if not draft.customer_name:
        draft.customer_name = input("Customer name: ").strip()
        draft.phone_number = input("Phone number: ").strip()
        draft.village = input("Village: ").strip()

    names = list(BILLING_ITEM_RATE_KEYS)
    while True:
        print("\nItems: " + "  ".join(f"{i + 1}) {n}" for i, n in enumerate(names)))
        for it in draft.items:
            print(f"  {it.name}: {it.quantity} x {format_money(it.rate)} = {format_money(it.total)}")
        print(f"  Total {format_money(draft.total_amount)}")
        pick = input("Add item number (blank = done): ").strip()
        if not pick:
            break
        try:
            name = names[int(pick) - 1]
        except (ValueError, IndexError):
            print("Invalid item.")
            continue
        quick_add_item(state, draft, name)
        qty = _input_int(f"Quantity for {name} [1]: ", None)
        if qty is not None:
            draft.update_item_quantity(name, qty)

    paid = _input_float("Paid amount [0]: ", 0.0)
    if paid is None:
        return
    draft.paid_amount = paid
    result = save_transaction(state, draft, queue_id=queue_id)
    print(f"Saved bill {result.record.id}: total {format_money(draft.total_amount)}, due {format_money(draft.due_amount)}")
    _show_due_alert(result.dues_alert)


def _cmd_rates(state: MillState) -> None:
    for key, value in vars(state.rates).items():
        print(f"- {key}: {value}")
    key = input("Rate to change (blank = none): ").strip()
    if not key:
        return
    value = _input_float("New rate: ")
    if value is not None:
        update_rate(state, key, value)


def _cmd_transactions(state: MillState) -> None:
    term = input("Search (blank = all): ").strip()
    due_only = input("Due only? y/N: ").strip().lower() == "y"
    rows = search_transactions(state.transactions, term, due_only)
    for day, txns in group_by_date(rows).items():
        print(f"\n{day}")
        for t in txns:
            flag = f" DUE {format_money(t.due_amount)}" if t.due_amount > 0 else ""
            print(f"  {t.id}: {t.name} ({t.village}) {format_money(t.total_amount)}{flag}")
    print("\n1) Hamali for ids  2) Total for ids  3) Delete  0) Back")
    sub = input("Choose: ").strip()
    if sub in {"1", "2"}:
        ids = [x.strip() for x in input("Ids (comma separated): ").split(",") if x.strip()]
        if sub == "1":
            print(f"Total hamali: {format_money(calculate_hamali(state.transactions, ids))}")
        else:
            print(f"Total income: {format_money(calculate_selected_total(state.transactions, ids))}")
    elif sub == "3":
        txn_id = input("Transaction id: ").strip()
        restore = input("Restore its inventory items? y/N: ").strip().lower() == "y"
        restored = delete_transaction(state, txn_id, restore_inventory=restore)
        print(f"Moved to bin. {restored} inventory line(s) restored.")


def _cmd_bin(state: MillState) -> None:
    cleanup_expired_bin_items(state)
    if not state.bin:
        print("Bin is empty.")
        return
    for b in state.bin:
        label = b.data.get("name", "")
        print(f"- {b.id}: {b.type} {label}  {days_remaining(b)} day(s) left")
    sub = input("r <id> to restore, d <id> to delete forever: ").strip().split()
    if len(sub) != 2:
        return
    if sub[0] == "r":
        restore_bin_item(state, sub[1])
        print("Restored.")
    elif sub[0] == "d":
        remove_from_bin(state, sub[1])
        print("Deleted forever.")


def _cmd_store(state: MillState) -> None:
    print("\nStock:")
    for s in state.stock:
        rate = stock_rate_for(state, s.name)
        print(f"- {s.name}: 25kg x{s.kg25}  50kg x{s.kg50}  value {format_money(stock_value(s, rate))}")
    print("Inventory:")
    for i in state.inventory:
        print(f"- {i.name}: {i.count}")
    print("\n1) Adjust stock  2) Adjust inventory  3) Record stock sale  4) Add stock line  5) Add inventory line")
    print("6) Checkpoint  7) Check inventory mismatches  8) Delete inventory line  9) Checkpoint history  0) Back")
    sub = input("Choose: ").strip()
    if sub == "1":
        name = input("Stock name: ").strip()
        d25 = _input_int("25kg change [0]: ", 0)
        d50 = _input_int("50kg change [0]: ", 0)
        if d25 is None or d50 is None:
            return
        update_stock(state, name, d25, d50)
    elif sub == "2":
        name = input("Inventory item: ").strip()
        change = _input_int("Change: ")
        if change is not None:
            update_inventory(state, name, change)
    elif sub == "3":
        name = input("Customer name: ").strip()
        phone = input("Phone number: ").strip()
        village = input("Village: ").strip()
        stock_name = input("Stock: ").strip()
        kg25 = _input_int("25kg bags [0]: ", 0)
        kg50 = _input_int("50kg bags [0]: ", 0)
        custom = _input_float("Custom weight kg [0]: ", 0.0)
        if kg25 is None or kg50 is None or custom is None:
            return
        raw_rate = input(f"Rate per kg [{stock_rate_for(state, stock_name):g}]: ").strip()
        rate = None
        if raw_rate:
            try:
                rate = float(raw_rate)
            except ValueError:
                print("Invalid input: enter a number.")
                return
        paid = _input_float("Paid amount [0]: ", 0.0)
        if paid is None:
            return
        result = record_stock_sale(state, name, phone, village, stock_name, kg25, kg50, custom, rate, paid)
        sale = result.record
        print(f"Sale of {sale.quantity:g}kg {sale.stock_bought}: total {format_money(sale.total_amount)}, due {format_money(sale.due_amount)}")
        _show_due_alert(result.dues_alert)
    elif sub == "4":
        add_stock_item(state, input("New stock name: "))
    elif sub == "5":
        add_inventory_item(state, input("New inventory item: "))
    elif sub == "6":
        name = input("Stock or inventory name: ").strip()
        if state.find_stock(name) is not None:
            add_stock_checkpoint(state, name)
        else:
            add_inventory_checkpoint(state, name)
        print("Checkpoint added.")
    elif sub == "7":
        mismatches = find_inventory_mismatches(state)
        if not mismatches:
            print("All inventory items are properly matched!")
        for m in mismatches:
            print(f"- {m.name}: expected {m.expected} actual {m.actual} ({m.difference:+d})")
        name = input("Fix which item (blank = none): ").strip()
        match = next((m for m in mismatches if m.name == name), None)
        if match is not None:
            fix_inventory_mismatch(state, match.name, match.expected)
    elif sub == "8":
        item = delete_inventory_item(state, input("Inventory item: ").strip())
        print(f"Moved {item.data.get('name')} to the bin.")
    elif sub == "9":
        for c in state.stock_checkpoints:
            print(f"- {c.date} {c.timestamp} {c.stock_name}: 25kg x{c.kg25_count}  50kg x{c.kg50_count}")
        for c in state.inventory_checkpoints:
            print(f"- {c.date} {c.timestamp} {c.item_name}: {c.count}")


def _cmd_dues(state: MillState) -> None:
    print_dues_overview(state)
    print("\n1) Add due  2) Search due records  3) Delete due  4) Customer due by phone  5) Clear customer dues  0) Back")
    sub = input("Choose: ").strip()
    if sub == "1":
        name = input("Customer name: ").strip()
        kind = input("Type bran/rice/custom [custom]: ").strip() or "custom"
        stock_type = input("Stock type (optional): ").strip()
        amount = _input_float("Amount: ")
        if amount is None:
            return
        desc = input("Description: ").strip()
        phone = input("Phone (optional): ").strip()
        add_due(state, name, amount, kind, stock_type, desc, phone)
    elif sub == "2":
        rows = search_dues(state.dues, input("Search: ").strip())
        for d in rows:
            print(f"- {d.id}: {d.customer_name} [{d.type}] {d.stock_type} {format_money(d.amount)} {d.description}")
    elif sub == "3":
        delete_due(state, input("Due id: ").strip())
    elif sub == "4":
        info = customer_due_info(state, input("Phone: ").strip())
        print(format_due_display(info) or "No dues.")
    elif sub == "5":
        cleared = clear_customer_dues(state, input("Phone: ").strip())
        print(f"Cleared {format_money(cleared)}.")


def _cmd_workers(state: MillState) -> None:
    print_workers(state)
    print("\n1) Add worker  2) Record payment  3) Mark fully paid  4) Edit amounts  5) Delete worker  0) Back")
    sub = input("Choose: ").strip()
    if sub == "1":
        name = input("Worker name: ").strip()
        borrowed = _input_float("Borrowed amount [0]: ", 0.0)
        salary = _input_float("Salary paid [0]: ", 0.0)
        if borrowed is None or salary is None:
            return
        add_worker(state, name, borrowed, salary)
    elif sub == "2":
        wid = input("Worker id: ").strip()
        amount = _input_float("Payment: ")
        if amount is not None:
            record_worker_payment(state, wid, amount)
    elif sub == "3":
        mark_salary_paid(state, input("Worker id: ").strip())
    elif sub == "4":
        wid = input("Worker id: ").strip()
        borrowed = _input_float("Borrowed amount: ")
        salary = _input_float("Salary paid: ")
        if borrowed is None or salary is None:
            return
        update_worker(state, wid, borrowed, salary)
    elif sub == "5":
        delete_worker(state, input("Worker id: ").strip())


def _input_date(prompt: str) -> Optional[date]:
    s = input(prompt).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        print("Invalid date: use YYYY-MM-DD.")
        return None


def _cmd_analytics(state: MillState) -> None:
    print("\n1) Today  2) One day  3) Date range")
    sub = input("Choose [1]: ").strip() or "1"
    if sub == "1":
        print_summary(summarize(state))
    elif sub == "2":
        day = _input_date("Date YYYY-MM-DD: ")
        if day is not None:
            print_summary(summarize(state, day=day))
    elif sub == "3":
        start = _input_date("From date YYYY-MM-DD: ")
        end = _input_date("To date YYYY-MM-DD: ")
        print_summary(summarize(state, start=start, end=end))
    else:
        print("Invalid option.")


def _autosave(state: MillState) -> None:
    try:
        save_state(state)
    except OSError as e:
        print(f"Save failed: {e}")


def main() -> int:
    logging.basicConfig(level=log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    state = load_state()
    cleanup_expired_bin_items(state)

    print("Rice Mill Management System (CLI)")

    commands: Dict[str, Callable[[MillState], None]] = {
        "1": _cmd_queue,
        "2": _cmd_billing,
        "3": _cmd_rates,
        "4": _cmd_transactions,
        "5": _cmd_bin,
        "6": _cmd_store,
        "7": _cmd_dues,
        "8": _cmd_workers,
        "9": _cmd_analytics,
    }

    while True:
        print("\n------------------------------")
        print(f"Queue: {len(state.queue)}  Bills: {len(state.transactions)}  Bin: {len(state.bin)}")
        print("------------------------------")
        print("1) Queue line")
        print("2) Billing")
        print("3) Billing rates")
        print("4) Transactions history")
        print("5) Bin")
        print("6) Store (stock & inventory)")
        print("7) Dues")
        print("8) Workers")
        print("9) Data analysis")
        print("10) Save")
        print("0) Exit")

        try:
            choice = input("Choose: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nBye.")
            _autosave(state)
            return 0

        if choice in commands:
            try:
                commands[choice](state)
            except RiceMillError as e:
                print(f"Error: {e}")
                continue
            except (EOFError, KeyboardInterrupt):
                print()
                continue
            if choice != "9":
                _autosave(state)
        elif choice == "10":
            _autosave(state)
        elif choice == "0":
            _autosave(state)
            print("Bye.")
            return 0
        else:
            print("Invalid option: enter 0-10.")


if __name__ == "__main__":
    raise SystemExit(main())
