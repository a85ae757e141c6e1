import re
import secrets
import string
import unicodedata
from typing import Optional
from uuid import uuid4


def slugify(value: Optional[str]) -> str:
    condensed = " ".join(str(value or "").split()).lower()
    ascii_name = unicodedata.normalize("NFKD", condensed).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name).strip("-")
    if not slug:
        slug = uuid4().hex
    return slug


def random_suffix(length: int = 6, alphabet: str = string.ascii_lowercase + string.digits) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))
