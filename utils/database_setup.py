#!/usr/bin/env python3
"""
Setup script creating the CRM tables in a SQLite database, with optional
sample rows for local runs and tests.
"""

import os
import sqlite3

SCHEMA = """
CREATE TABLE IF NOT EXISTS company_types (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS relationship_types (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS team_members (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    role TEXT
);
CREATE TABLE IF NOT EXISTS companies (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    country TEXT,
    status TEXT,
    company_type_id INTEGER REFERENCES company_types(id),
    priority INTEGER,
    number_of_employees INTEGER,
    number_of_developers INTEGER,
    potential_arr_eur REAL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS contacts (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    title TEXT,
    linkedin TEXT,
    phone TEXT,
    contact_status TEXT DEFAULT 'Active',
    company_id INTEGER REFERENCES companies(id),
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS activities (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    status TEXT,
    description TEXT,
    relationship_type_id INTEGER REFERENCES relationship_types(id),
    priority INTEGER,
    last_contact_date TEXT,
    next_step TEXT,
    next_step_due_date TEXT,
    owner_id INTEGER REFERENCES team_members(id),
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS artifacts (
    id INTEGER PRIMARY KEY,
    document_name TEXT NOT NULL,
    type TEXT,
    related_project TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT,
    assigned_to INTEGER REFERENCES team_members(id)
);
"""

SAMPLE_ROWS = {
    "company_types": [(1, "Fintech"), (2, "Investor"), (3, "Software")],
    "relationship_types": [(1, "Partner"), (2, "Prospect")],
    "team_members": [(1, "Alice Martin", "alice@example.com", "Sales")],
    "companies": [
        (1, "Acme", "Germany", "Active", 1),
        (2, "Alphabak", "Netherlands", "Active", 2),
        (3, "Globex", "France", "Prospect", 3),
    ],
    "contacts": [
        (1, "George Miller", "george@alphabak.com", "CTO", 2),
        (2, "George Brown", "george@globex.com", "CEO", 3),
        (3, "Jane Doe", "jane@acme.com", "Head of Product", 1),
    ],
}

_INSERTS = {
    "company_types": "INSERT INTO company_types (id, name) VALUES (?, ?)",
    "relationship_types": "INSERT INTO relationship_types (id, name) VALUES (?, ?)",
    "team_members": "INSERT INTO team_members (id, name, email, role) VALUES (?, ?, ?, ?)",
    "companies": "INSERT INTO companies (id, name, country, status, company_type_id) VALUES (?, ?, ?, ?, ?)",
    "contacts": "INSERT INTO contacts (id, name, email, title, company_id) VALUES (?, ?, ?, ?, ?)",
}


def setup_crm_database(db_path: str, with_samples: bool = True) -> str:
    """Create the CRM tables at ``db_path``; seed sample rows into empty tables."""
    directory = os.path.dirname(db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(SCHEMA)
        if with_samples:
            for table, rows in SAMPLE_ROWS.items():
                (count,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
                if count == 0:
                    conn.executemany(_INSERTS[table], rows)
        conn.commit()
    finally:
        conn.close()
    return db_path


if __name__ == "__main__":
    from core.config import DEFAULT_DB_PATH

    path = setup_crm_database(DEFAULT_DB_PATH)
    print(f"Database created successfully at {path}")
