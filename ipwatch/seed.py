from sqlalchemy.orm import Session

from ipwatch.database.db import SessionLocal, Base, engine
from ipwatch.models.user import User

DEMO_USERS = [
    {"id": "user-analyst-1", "email": "analyst@example.com", "first_name": "Ana", "last_name": "Lyst", "role": "analyst"},
    {"id": "user-manager-1", "email": "manager@example.com", "first_name": "Morgan", "last_name": "Reyes", "role": "manager"},
    {"id": "user-former-1", "email": "former@example.com", "first_name": "Sam", "last_name": "Hale", "role": "analyst", "is_active": False}
]


def seed_users(db: Session) -> int:
    created = 0
    for data in DEMO_USERS:
        if db.query(User).filter(User.id == data["id"]).first():
            continue
        db.add(User(**data))
        created += 1
    db.commit()
    return created


if __name__ == "__main__":
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        count = seed_users(db)
    finally:
        db.close()
    print(f"Seeded {count} users")
