import argparse
import os
import random
from datetime import datetime, timedelta
from pathlib import Path

import sys

# Make `src/` importable when running as a script.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ricemill.dues import add_due
from ricemill.engine import (
    BillDraft,
    add_queue_customer,
    add_worker,
    quick_add_item,
    record_stock_sale,
    record_worker_payment,
    save_transaction,
    stock_rate_for,
    update_inventory,
    update_stock,
)
from ricemill.models import MillState
from ricemill.presets import default_state
from ricemill.storage import save_state


VILLAGES = ["Kothapalli", "Peddapur", "Ramapuram", "Gollapalli", "Chintalapudi", "Venkatapuram"]
FIRST_NAMES = ["Ravi", "Sita", "Gopal", "Lakshmi", "Anil", "Mohan", "Padma", "Suresh", "Kavitha", "Ramesh", "Durga", "Naresh"]
SURNAMES = ["Reddy", "Rao", "Naidu", "Goud", "Varma", "Chowdary"]


def _pick(rng: random.Random, items):
    return items[rng.randrange(0, len(items))]


def _customers(rng: random.Random, count: int) -> list[tuple[str, str, str]]:
    # name, phone, village; phones stay stable so dues accumulate per customer.
    out = []
    for _ in range(count):
        name = f"{_pick(rng, FIRST_NAMES)} {_pick(rng, SURNAMES)}"
        phone = f"9{rng.randint(100000000, 999999999)}"
        out.append((name, phone, _pick(rng, VILLAGES)))
    return out


def _bill(state: MillState, rng: random.Random, customer: tuple[str, str, str], when: datetime) -> None:
    name, phone, village = customer
    bags = rng.randint(5, 80)
    draft = BillDraft(customer_name=name, phone_number=phone, village=village, load_brought=bags)

    quick_add_item(state, draft, "Milling")
    draft.update_item_quantity("Milling", bags * 25)
    for item, chance, qty in (
        ("Unloading", 0.8, bags),
        ("Loading", 0.7, bags),
        ("Big Bags", 0.4, max(1, bags // 2)),
        ("Small Bags", 0.3, rng.randint(1, 10)),
        ("Powder", 0.15, 1),
        ("Nukalu", 0.2, rng.randint(1, 5)),
    ):
        if rng.random() < chance:
            quick_add_item(state, draft, item)
            draft.update_item_quantity(item, qty)

    # Most customers settle, some leave a balance.
    share = 1.0 if rng.random() < 0.7 else rng.choice([0.0, 0.5, 0.8])
    draft.paid_amount = round(draft.total_amount * share, 2)
    save_transaction(state, draft, now=when)


def build_state(days: int, seed: int) -> MillState:
    rng = random.Random(int(seed))
    state = default_state()

    for name, count in (("Powders", 40), ("Small Bags", 600), ("Big Bags", 800), ("Bran Bags", 300)):
        update_inventory(state, name, count)
    for s in state.stock:
        update_stock(state, s.name, rng.randint(20, 120), rng.randint(10, 60))

    customers = _customers(rng, max(4, days * 2))
    start = datetime.now().replace(hour=8, minute=0, second=0, microsecond=0) - timedelta(days=days)

    for day in range(days):
        base = start + timedelta(days=day)
        for _ in range(rng.randint(2, 6)):
            when = base + timedelta(minutes=rng.randint(0, 10 * 60))
            _bill(state, rng, _pick(rng, customers), when)

        if rng.random() < 0.5:
            name, phone, village = _pick(rng, customers)
            stock = _pick(rng, state.stock).name
            kg25, kg50 = rng.randint(0, 4), rng.randint(1, 3)
            total = (kg25 * 25 + kg50 * 50) * stock_rate_for(state, stock)
            record_stock_sale(
                state,
                name,
                phone,
                village,
                stock,
                kg25_bags=kg25,
                kg50_bags=kg50,
                paid_amount=round(total * rng.choice([1.0, 1.0, 0.5]), 2),
                now=base + timedelta(hours=rng.randint(1, 9)),
            )

    today = datetime.now()
    for _ in range(rng.randint(3, 8)):
        name, phone, village = _pick(rng, customers)
        add_queue_customer(state, name, phone, rng.randint(3, 90), village=village, now=today)

    for _ in range(3):
        name, phone, _village = _pick(rng, customers)
        add_due(state, name, float(rng.choice([150, 300, 750, 1200])), description="Carried over", phone_number=phone, now=today)

    for name in ("Raju", "Venkatesh", "Srinu", "Babu"):
        w = add_worker(state, name, borrowed_amount=float(rng.choice([0, 2000, 5000, 8000])), now=start)
        record_worker_payment(state, w.id, float(rng.choice([0, 1000, 3000, 6000])))

    return state


def main() -> int:
    ap = argparse.ArgumentParser(description="Generate a demo rice mill with bills, stock sales, dues and workers")
    ap.add_argument("--days", type=int, default=60)
    ap.add_argument("--seed", type=int, default=20260129)
    ap.add_argument("--data-dir", type=str, default=str(ROOT / "data" / "demo"))
    args = ap.parse_args()

    os.environ["RICEMILL_DATA_DIR"] = str(Path(args.data_dir))

    state = build_state(days=max(1, int(args.days)), seed=int(args.seed))
    save_state(state)
    print(f"wrote: {args.data_dir}")
    print(f"bills: {len(state.transactions)}  stock sales: {len(state.stock_transactions)}  queue: {len(state.queue)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
