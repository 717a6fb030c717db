"""Server-rendered auth pages (login, registration, MFA, dashboard)."""
