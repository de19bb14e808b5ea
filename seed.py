from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import CURRENCY_SYMBOL_KEY, Category, Setting, Subcategory


DEFAULT_CATEGORIES: list[tuple[str, str, str, list[str]]] = [
    ("Food & Dining", "🍔", "#FF6B6B", ["Groceries", "Restaurants", "Coffee", "Fast Food"]),
    ("Transportation", "🚗", "#4ECDC4", ["Fuel", "Public Transit", "Parking", "Maintenance"]),
    ("Shopping", "🛍️", "#45B7D1", ["Clothing", "Electronics", "Home", "Gifts"]),
    ("Entertainment", "🎬", "#96CEB4", ["Movies", "Games", "Subscriptions", "Events"]),
    ("Bills & Utilities", "💡", "#FFEAA7", ["Electricity", "Internet", "Phone", "Water"]),
    ("Health & Medical", "💊", "#DDA0DD", ["Doctor", "Pharmacy", "Insurance", "Gym"]),
    ("Travel", "✈️", "#98D8C8", ["Flights", "Hotels", "Activities"]),
    ("Education", "📚", "#F7DC6F", ["Books", "Courses", "Supplies"]),
    ("Personal Care", "💇", "#BB8FCE", ["Haircut", "Cosmetics", "Spa"]),
    ("Other", "📦", "#AEB6BF", ["Miscellaneous"]),
]

DEFAULT_SETTINGS: dict[str, str] = {CURRENCY_SYMBOL_KEY: "$"}


def seed_default_categories(session: Session) -> int:
    existing = session.execute(select(func.count(Category.id))).scalar_one()
    if existing:
        return 0
    for name, icon, color, subcategories in DEFAULT_CATEGORIES:
        category = Category(name=name, icon=icon, color=color, is_default=True)
        category.subcategories = [Subcategory(name=sub) for sub in subcategories]
        session.add(category)
    return len(DEFAULT_CATEGORIES)


def seed_default_settings(session: Session) -> None:
    for key, value in DEFAULT_SETTINGS.items():
        if session.get(Setting, key) is None:
            session.add(Setting(key=key, value=value))


def seed_defaults(session: Session) -> None:
    seed_default_categories(session)
    seed_default_settings(session)
    session.commit()
