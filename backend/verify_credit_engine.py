from sqlalchemy.orm import sessionmaker

from studio_credits.core.database import Base, make_engine
from studio_credits.core.errors import InsufficientFunds
from studio_credits.core.settings import settings
from studio_credits.models import credit_account, payment_order  # noqa: F401
from studio_credits.models.credit_ledger import CreditLedger
from studio_credits.services.credits_engine import add_credits, deduct_credits, get_credit_balance, grant_trial_credits


def main() -> None:
    engine = make_engine("sqlite:///:memory:")
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        user_id = "user-1"
        settings.trial_credits = 2
        grant_trial_credits(db, user_id)
        grant_trial_credits(db, user_id)
        bal = get_credit_balance(db, user_id)
        assert bal == 2, bal

        assert deduct_credits(db, user_id, 1) == 1
        assert deduct_credits(db, user_id, 1) == 0
        try:
            deduct_credits(db, user_id, 1)
        except InsufficientFunds:
            pass
        else:
            raise AssertionError("debit below zero was accepted")

        first = add_credits(db, user_id, 120, "gateway_order_X")
        again = add_credits(db, user_id, 120, "gateway_order_X")
        assert first.new_balance == again.new_balance == 120, (first, again)
        assert again.replayed

        rows = db.query(CreditLedger).filter(CreditLedger.user_id == user_id).all()
        assert len(rows) == 4, len(rows)
        assert all(r.balance_after >= 0 for r in rows)
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
