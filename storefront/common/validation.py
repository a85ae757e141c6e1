from datetime import datetime, timedelta
from typing import Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from quart import request

from .db import utcnow
from .errors import ValidationFailed

M = TypeVar("M", bound=BaseModel)

PERIODS = {
    "all_time": None,
    "monthly": timedelta(days=30),
    "weekly": timedelta(days=7),
    "daily": timedelta(days=1),
}


def _field_errors(exc: ValidationError) -> Dict[str, list]:
    errors: Dict[str, list] = {}
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ())) or "body"
        errors.setdefault(field, []).append(err.get("msg", "Invalid value"))
    return errors


def validate(schema: Type[M], data) -> M:
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise ValidationFailed(_field_errors(e))


async def parse_body(schema: Type[M]) -> M:
    data = await request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        data = {}
    return validate(schema, data)


def int_arg(args, name: str, default: Optional[int] = None, minimum: Optional[int] = None, maximum: Optional[int] = None) -> Optional[int]:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationFailed.single(name, f"The {name} must be an integer.")
    if minimum is not None and value < minimum:
        raise ValidationFailed.single(name, f"The {name} must be at least {minimum}.")
    if maximum is not None and value > maximum:
        raise ValidationFailed.single(name, f"The {name} must not be greater than {maximum}.")
    return value


def float_arg(args, name: str) -> Optional[float]:
    raw = args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValidationFailed.single(name, f"The {name} must be a number.")


def choice_arg(args, name: str, choices, default: Optional[str] = None) -> Optional[str]:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    if raw not in choices:
        raise ValidationFailed.single(name, f"The selected {name} is invalid.")
    return raw


def truthy_arg(args, name: str) -> bool:
    raw = args.get(name)
    if raw is None:
        return False
    return str(raw).strip().lower() not in {"0", "false", "no", "off"}


def date_range_args(args):
    """``start_date``/``end_date`` only apply together, like a BETWEEN."""
    start, end = args.get("start_date"), args.get("end_date")
    if not start or not end:
        return None
    try:
        start_dt = datetime.fromisoformat(start)
        end_dt = datetime.fromisoformat(end)
    except ValueError:
        raise ValidationFailed.single("start_date", "The dates must be valid ISO dates.")
    if len(end) <= 10:
        # a bare date includes the whole day
        end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)
    return start_dt, end_dt


def period_start(period: Optional[str]) -> Optional[datetime]:
    delta = PERIODS.get(period or "all_time")
    return utcnow() - delta if delta else None


def start_of_today() -> datetime:
    today = utcnow().date()
    return datetime.combine(today, datetime.min.time())

