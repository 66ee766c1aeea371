import argparse
from parkeasy.audit import audit_space, resync_slot_count
from parkeasy.database import unit_of_work

parser = argparse.ArgumentParser(description="Check a parking space's slots and reservations")
parser.add_argument("space_id")
parser.add_argument("--fix-count", action="store_true", help="reset the recorded slot count to the live slot rows")
args = parser.parse_args()

with unit_of_work() as db:
    print(f"Checking space {args.space_id}...")
    issues = audit_space(db, args.space_id)
    if not issues:
        print("OK")
    for issue in issues:
        print(issue)

    if args.fix_count:
        actual = resync_slot_count(db, args.space_id)
        print(f"Done. Slot count is {actual}.")
