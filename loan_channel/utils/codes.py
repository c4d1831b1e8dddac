import secrets

from loan_channel.database.models.user_model import Role

_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

CODE_PREFIXES = {
    Role.ASM: "ASM",
    Role.RM: "RM",
    Role.PARTNER: "PT",
}

# Prefixes for sequential employee ids and application numbers
EMPLOYEE_ID_PREFIXES = {
    Role.SUPER_ADMIN: "TLS",
    Role.ASM: "TLA",
    Role.RM: "TLR",
    Role.PARTNER: "TLP",
    Role.CUSTOMER: "TLC",
}
APPLICATION_PREFIX = "TLF"


def make_role_code(role: Role, size: int = 8) -> str:
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(size))
    return f"{CODE_PREFIXES[role]}-{suffix}"
