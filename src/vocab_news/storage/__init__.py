"""Relational task store: SQLModel tables, engine policy and migrations."""
