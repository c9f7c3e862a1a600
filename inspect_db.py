from app import create_app
from models import Snapshot, User, db


def main():
    app = create_app()
    with app.app_context():
        print("Users in DB:")
        for user in db.session.execute(db.select(User).order_by(User.created_at)).scalars():
            print(f"- {user.id} | {user.email}")

        print("\nSnapshots in DB:")
        stmt = db.select(Snapshot).order_by(Snapshot.owner_id, Snapshot.month_key)
        for s in db.session.execute(stmt).scalars():
            print(
                f"- {s.month_key} | cash {s.cash_on_hand} | savings {s.savings} | stocks {s.stocks}"
                f" | real estate {s.real_estate} | debt {s.debt} | User {s.owner_id}"
            )


if __name__ == "__main__":
    main()
