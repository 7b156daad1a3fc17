import re
from typing import Optional, Union

E164_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")


def validate_phone_number(phone: Union[str, int, None]) -> Optional[int]:
    """Validate an E.164 phone number and return it as an integer.

    Empty values are allowed and come back as ``None``. Raises ``ValueError``
    for anything that is not a phone number.
    """
    if phone is None or phone == "":
        return None
    text = str(phone).strip()
    if not E164_PATTERN.match(text):
        raise ValueError("Invalid phone number format")
    return int(re.sub(r"\D", "", text))
