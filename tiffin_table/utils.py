import re
from typing import Optional

import bleach


def sanitize_input(value: Optional[str], max_length: int = 200) -> str:
    """Clean free text typed by a customer (search box, review comment).

    - Strips HTML tags using bleach.clean(..., strip=True)
    - Removes '--' and ';' so the text is safe to echo into filters
    - Collapses runs of whitespace and trims to ``max_length``
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    val = bleach.clean(val, tags=[], strip=True)
    val = re.sub(r"(--|;)", "", val)
    val = re.sub(r"\s+", " ", val).strip()
    return val[:max_length]
