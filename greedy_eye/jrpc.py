# greedy_eye/jrpc.py
"""
JSON-RPC 2.0 framing for the venue's `liquidityProxy_quote` call.

Amounts travel as integer strings scaled by 10^wire_scale (18 on SORA).
Encoding rounds half away from zero to an integer; decoding is exact.
"""
import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Any, Dict, Optional

from .errors import BadResponseError

QUOTE_METHOD = "liquidityProxy_quote"
WIRE_SCALE = 18
# Wide enough that scaling by 10^18 never rounds before the explicit quantize
_WIRE_PRECISION = 120


@dataclass(slots=True, frozen=True)
class QuoteResponse:
    req_id: int
    amount: Decimal
    fee: Decimal
    result: Dict[str, Any]


def to_wire(amount: Decimal, scale: int = WIRE_SCALE) -> str:
    with localcontext() as ctx:
        ctx.prec = _WIRE_PRECISION
        scaled = amount.scaleb(scale).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return format(scaled, "f")


def from_wire(value: Any, scale: int = WIRE_SCALE) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError(f"expected an integer string, got {value!r}")
    try:
        raw = Decimal(value)
    except InvalidOperation:
        raise ValueError(f"expected an integer string, got {value!r}") from None
    if not raw.is_finite() or raw != raw.to_integral_value():
        raise ValueError(f"expected an integer string, got {value!r}")
    with localcontext() as ctx:
        ctx.prec = _WIRE_PRECISION
        return raw.scaleb(-scale)


def encode_quote_request(req_id: int, address_from: str, address_to: str,
                         amount: Decimal, scale: int = WIRE_SCALE) -> str:
    req = {
        "id": req_id,
        "jsonrpc": "2.0",
        "method": QUOTE_METHOD,
        "params": [
            0,
            address_from,
            address_to,
            to_wire(amount, scale),
            "WithDesiredInput",
            [],
            "Disabled",
        ],
    }
    return json.dumps(req, separators=(",", ":"))


def decode_quote_response(message: str, scale: int = WIRE_SCALE) -> QuoteResponse:
    try:
        data = json.loads(message)
    except (TypeError, ValueError) as e:
        raise BadResponseError(f"frame is not JSON: {e}") from None
    if not isinstance(data, dict):
        raise BadResponseError("frame is not a JSON object")

    req_id: Optional[int] = data.get("id")
    if isinstance(req_id, bool) or not isinstance(req_id, int):
        raise BadResponseError(f"malformed id: {req_id!r}")

    if data.get("error") is not None:
        raise BadResponseError(f"venue error: {data['error']}", req_id=req_id)
    result = data.get("result")
    if not isinstance(result, dict):
        raise BadResponseError("missing result object", req_id=req_id)

    try:
        amount = from_wire(result["amount"], scale)
        fee = from_wire(result["fee"], scale)
    except KeyError as e:
        raise BadResponseError(f"result has no {e.args[0]!r}", req_id=req_id) from None
    except ValueError as e:
        raise BadResponseError(str(e), req_id=req_id) from None

    return QuoteResponse(req_id=req_id, amount=amount, fee=fee, result=result)
