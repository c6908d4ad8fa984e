"""
Marketplace: caller identity

Authentication happens upstream (the BFF verifies the token) and the
verified identity is forwarded as headers. This module only reads them
and enforces roles.
"""

from dataclasses import dataclass
from enum import Enum

from fastapi import Header

from .errors import Forbidden, Unauthorized


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    ADMIN = "ADMIN"
    DELIVERY = "DELIVERY"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: Role
    name: str = "Customer"
    email: str = "customer@example.com"

    def require(self, *roles: Role) -> None:
        if self.role not in roles:
            raise Forbidden(
                f"Access denied for role {self.role.value}",
                allowed=[r.value for r in roles],
            )


async def current_user(
    x_user_id: str | None = Header(default=None),
    x_user_role: str = Header(default=Role.CUSTOMER.value),
    x_user_name: str = Header(default="Customer"),
    x_user_email: str = Header(default="customer@example.com"),
) -> Identity:
    if not x_user_id:
        raise Unauthorized("Access denied, no identity provided")
    try:
        role = Role(x_user_role.upper())
    except ValueError:
        raise Forbidden(f"Unknown role {x_user_role}") from None
    return Identity(user_id=x_user_id, role=role, name=x_user_name, email=x_user_email)
