import sys
from decimal import Decimal
from pathlib import Path

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.hrms.config import build_database_url  # noqa: E402
from app.hrms.models import DeductionType  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

# (code, name, calculation_method, default_amount, is_tax_deductible, is_mandatory, description)
STANDARD_DEDUCTION_TYPES = [
    ("PF", "Provident Fund", "percentage", Decimal("12.00"), True, True, "Employee provident fund contribution"),
    ("ESI", "Employee State Insurance", "percentage", Decimal("0.75"), True, True, "Health insurance contribution"),
    ("PT", "Professional Tax", "fixed", Decimal("200.00"), True, True, "State professional tax"),
    ("TDS", "Income Tax (TDS)", "percentage", None, False, True, "Tax deducted at source"),
    ("LOAN", "Loan Repayment", "fixed", None, False, False, "Salary advance / loan EMI"),
    ("GI", "Group Insurance", "fixed", Decimal("150.00"), True, False, "Group term life insurance premium"),
]


def seed_only(*, database_url: str | None = None) -> int:
    """
    Seed standard deduction types in an idempotent way (matched by code).
    Existing rows are left untouched. Returns number of rows inserted.
    """
    db_url = (database_url or build_database_url() or "").strip()
    if not db_url:
        raise RuntimeError("No database configured (set DATABASE_URL or DB_HOST/DB_NAME).")

    inserted = 0
    with script_session(db_url) as s:
        existing = {code for (code,) in s.query(DeductionType.code).all()}
        for code, name, method, amount, tax_deductible, mandatory, description in STANDARD_DEDUCTION_TYPES:
            if code in existing:
                continue
            s.add(
                DeductionType(
                    code=code,
                    name=name,
                    calculation_method=method,
                    default_amount=amount,
                    is_tax_deductible=tax_deductible,
                    is_mandatory=mandatory,
                    description=description,
                    is_active=True,
                )
            )
            inserted += 1
    return inserted


def main() -> None:
    inserted = seed_only()
    print(f"Seeded {inserted} deduction type(s).", flush=True)


if __name__ == "__main__":
    main()
