"""Auth domain event catalog."""

from __future__ import annotations

AUTH_USER_REGISTERED = "auth.user.registered"
AUTH_USER_LOGGED_IN = "auth.user.logged_in"
AUTH_USER_LOGGED_OUT = "auth.user.logged_out"
AUTH_COMPANY_SWITCHED = "auth.company.switched"

EVENT_CATALOG = {
    AUTH_USER_REGISTERED: {
        "version": "v1",
        "payload": {
            "user_id": "int",
            "email": "str",
            "full_name": "str?",
            "tenant_id": "int?",
        },
    },
    AUTH_USER_LOGGED_IN: {
        "version": "v1",
        "payload": {"user_id": "int", "tenant_id": "int?", "company_id": "int?"},
    },
    AUTH_USER_LOGGED_OUT: {
        "version": "v1",
        "payload": {"user_id": "int", "jti": "str"},
    },
    AUTH_COMPANY_SWITCHED: {
        "version": "v1",
        "payload": {"user_id": "int", "tenant_id": "int", "company_id": "int?", "role": "str"},
    },
}

__all__ = [
    "AUTH_USER_REGISTERED",
    "AUTH_USER_LOGGED_IN",
    "AUTH_USER_LOGGED_OUT",
    "AUTH_COMPANY_SWITCHED",
    "EVENT_CATALOG",
]
