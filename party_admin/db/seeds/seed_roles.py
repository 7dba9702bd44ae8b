"""Seed default roles into the database."""

import json
from sqlalchemy.orm import Session
from party_admin.models.role import Role
from party_admin.services.role_service import role_service

DEFAULT_ROLES = [
    {
        "name": "user",
        "display_name": "User",
        "description": "Basic user with read access to members",
        "permissions": {"read": ["members"]},
    },
    {
        "name": "admin",
        "display_name": "Admin",
        "description": "Manages members and settings, cannot touch super admins",
        "permissions": {
            "read": ["members", "settings"],
            "write": ["members", "settings"],
            "delete": ["members"],
        },
    },
    {
        "name": "super_admin",
        "display_name": "Super Admin",
        "description": "Full system access, manages every account",
        "permissions": {
            "read": ["*"],
            "write": ["*"],
            "delete": ["*"],
            "manage_users": True,
        },
    },
]


def seed_roles(db: Session) -> int:
    """Insert default roles if they don't already exist. Returns how many were added."""
    added = 0
    for role_data in DEFAULT_ROLES:
        existing = db.query(Role).filter(Role.name == role_data["name"]).first()
        if existing:
            continue
        db.add(Role(
            name=role_data["name"],
            display_name=role_data["display_name"],
            description=role_data["description"],
            permissions_json=json.dumps(role_data["permissions"]),
            is_active=True,
        ))
        added += 1

    db.commit()
    role_service.invalidate_cache()
    print(f"✅ Seeded {added} roles ({len(DEFAULT_ROLES) - added} already present)")
    return added
