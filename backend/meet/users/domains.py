# meet/users/domains.py
from django.conf import settings


def college_domain_of(email: str) -> str:
    _, _, domain = str(email or "").rpartition("@")
    return domain.strip().lower()


def is_college_email(email: str) -> bool:
    domain = college_domain_of(email)
    if not domain:
        return False
    if ".edu" in domain:
        return True
    allowed = getattr(settings, "ALLOWED_EMAIL_DOMAINS", [])
    return any(domain == d or domain.endswith("." + d) for d in allowed)
