import logging
import sqlite3
import sys
from pathlib import Path

from .settings import get_settings

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS customers (
      id INTEGER PRIMARY KEY,
      name TEXT NOT NULL,
      email TEXT NOT NULL,
      city TEXT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
      id INTEGER PRIMARY KEY,
      name TEXT NOT NULL,
      category TEXT NOT NULL,
      price REAL NOT NULL,
      stock INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
      id INTEGER PRIMARY KEY,
      customer_id INTEGER NOT NULL REFERENCES customers(id),
      product_id INTEGER NOT NULL REFERENCES products(id),
      quantity INTEGER NOT NULL,
      placed_at TEXT NOT NULL
    )
    """,
)

CUSTOMERS = [
    (1, "Lisa Park", "lisa.park@example.com", "Seattle"),
    (2, "Daniel Kim", "daniel.kim@example.com", "Portland"),
    (3, "Amelia Stone", "amelia.stone@example.com", "Seattle"),
    (4, "Marcus Rivera", "marcus.rivera@example.com", None),
    (5, "Sarah Chen", "sarah.chen@example.com", "Denver"),
]

PRODUCTS = [
    (1, "Desk Lamp", "home", 39.5, 120),
    (2, "Standing Desk", "furniture", 499.0, 12),
    (3, "Office Chair", "furniture", 249.99, 30),
    (4, "Notebook", "stationery", 4.25, 800),
    (5, "Monitor Arm", "accessories", 89.0, 45),
]

ORDERS = [
    (1, 1, 2, 1, "2025-02-01 10:15:00"),
    (2, 1, 4, 10, "2025-02-01 10:15:00"),
    (3, 2, 3, 2, "2025-02-03 14:02:00"),
    (4, 3, 1, 1, "2025-02-05 09:40:00"),
    (5, 5, 5, 3, "2025-02-07 17:25:00"),
    (6, 4, 2, 1, "2025-02-08 11:00:00"),
]


def init_database(path: Path) -> None:
    """Create the demo retail schema at ``path`` and load sample rows when empty."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    cur = conn.cursor()
    try:
        for statement in SCHEMA_STATEMENTS:
            cur.execute(statement)

        cur.execute("SELECT COUNT(*) FROM customers")
        if cur.fetchone()[0] == 0:
            cur.executemany(
                "INSERT INTO customers (id, name, email, city) VALUES (?, ?, ?, ?)",
                CUSTOMERS,
            )
            cur.executemany(
                "INSERT INTO products (id, name, category, price, stock) VALUES (?, ?, ?, ?, ?)",
                PRODUCTS,
            )
            cur.executemany(
                """
                INSERT INTO orders (id, customer_id, product_id, quantity, placed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                ORDERS,
            )
            logger.info(
                "Loaded demo data: %d customers, %d products, %d orders",
                len(CUSTOMERS),
                len(PRODUCTS),
                len(ORDERS),
            )
        conn.commit()
    finally:
        cur.close()
        conn.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s - %(message)s")
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else get_settings().db_sqlite_path
    init_database(target)
    logger.info("Database initialized at %s", target)
