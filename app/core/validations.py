import re
from app.core.exceptions import ValidationError

# Mobile operators: Telma (034, 038), Orange (032, 037), Airtel (033)
MG_MOBILE_PREFIXES = ("32", "33", "34", "37", "38")

_MG_PHONE_RE = re.compile(r"^(?:\+?261|0)(3[23478])(\d{7})$")


def clean_phone_number(phone: str) -> str:
    """
    Validate a Madagascar mobile number and return it in local form.

    Accepts ``034 12 345 67``, ``+261341234567`` or ``261341234567``;
    returns ``0341234567``. The normalized form is the natural key used to
    find an existing student.
    """
    if not phone:
        raise ValidationError("Phone number cannot be empty")

    compact = re.sub(r"[\s\-\.]", "", phone)

    match = _MG_PHONE_RE.match(compact)
    if not match:
        raise ValidationError(
            "Phone number is not a valid Madagascar mobile number",
            details={"phone": phone},
        )

    operator, subscriber = match.groups()
    return f"0{operator}{subscriber}"
